"""Date helpers for scheduling and display.

All stored instants are timezone-aware UTC. "Today" is the local calendar day
of the instant being compared against.
"""

from datetime import datetime, time, timedelta, timezone

SECONDS_PER_DAY = 86400.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def start_of_day(now: datetime) -> datetime:
    local = ensure_aware(now).astimezone()
    return datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)


def end_of_day(now: datetime) -> datetime:
    local = ensure_aware(now).astimezone()
    return datetime.combine(local.date(), time.max, tzinfo=local.tzinfo)


def days_between(earlier: datetime, later: datetime) -> float:
    return (ensure_aware(later) - ensure_aware(earlier)).total_seconds() / SECONDS_PER_DAY


def add_days(dt: datetime, days: float) -> datetime:
    return ensure_aware(dt) + timedelta(days=days)


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_interval(days: float) -> str:
    """Human readable interval, e.g. "10 minutes", "3 days", "2 months"."""
    if days < 1:
        hours = days * 24
        if hours < 1:
            return _plural(round(hours * 60), "minute")
        return _plural(round(hours), "hour")
    if days < 30:
        return _plural(round(days), "day")
    if days < 365:
        return _plural(round(days / 30), "month")
    return _plural(round(days / 365), "year")
