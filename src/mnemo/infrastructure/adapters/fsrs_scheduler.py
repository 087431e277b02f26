"""
FSRS scheduling function backed by fsrs-rs-python.

The library only knows memory states (stability, difficulty) and intervals.
This adapter maps its output onto our Schedule: state transitions, lapse and
rep counters, due dates, and the pre-review log that makes rollback exact.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime

from fsrs_rs_python import DEFAULT_PARAMETERS, FSRS, MemoryState

from mnemo.application.utils.dates import add_days, days_between, ensure_aware, format_interval
from mnemo.domain.constants import (
    DEFAULT_ENABLE_FUZZ,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_REQUEST_RETENTION,
    FSRS_DIFFICULTY_MAX,
    FSRS_DIFFICULTY_MIN,
    FUZZ_MIN_INTERVAL_DAYS,
    LEARNING_FLOOR_MINUTES,
)
from mnemo.domain.models import (
    CardState,
    FsrsParams,
    PreviewEntry,
    Rating,
    RatingLog,
    ReviewLog,
    Schedule,
)
from mnemo.domain.ports import SchedulingFunction

logger = logging.getLogger(__name__)

# Power forgetting curve used by FSRS-4.5 and later.
DECAY = -0.5
FACTOR = 19.0 / 81.0

GRADUATION_THRESHOLD_DAYS = 1.0
LEARNING_FLOOR_DAYS = LEARNING_FLOOR_MINUTES / 1440.0


class FsrsScheduler(SchedulingFunction):
    def __init__(
        self,
        desired_retention: float = DEFAULT_REQUEST_RETENTION,
        maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL,
        enable_fuzz: bool = DEFAULT_ENABLE_FUZZ,
        parameters: list[float] | None = None,
        rng: random.Random | None = None,
    ):
        self.fsrs = FSRS(parameters=list(parameters) if parameters else list(DEFAULT_PARAMETERS))
        self.desired_retention = desired_retention
        self.maximum_interval = maximum_interval
        self.enable_fuzz = enable_fuzz
        self._rng = rng or random.Random()

    @classmethod
    def from_params(cls, params: FsrsParams, **kwargs) -> FsrsScheduler:
        return cls(
            desired_retention=params.request_retention,
            maximum_interval=params.maximum_interval,
            enable_fuzz=params.enable_fuzz,
            **kwargs,
        )

    # ---------- Helpers ----------

    def _memory_state(self, schedule: Schedule) -> MemoryState | None:
        if schedule.state == CardState.NEW or (schedule.stability <= 0 and schedule.reps == 0):
            return None
        return MemoryState(
            stability=max(0.1, float(schedule.stability)),
            difficulty=max(
                FSRS_DIFFICULTY_MIN, min(FSRS_DIFFICULTY_MAX, float(schedule.difficulty))
            ),
        )

    def _elapsed_days(self, schedule: Schedule, now: datetime) -> float:
        if schedule.last_review is None:
            return 0.0
        return max(0.0, days_between(schedule.last_review, now))

    def _next_states(self, schedule: Schedule, now: datetime):
        elapsed = self._elapsed_days(schedule, now)
        return self.fsrs.next_states(
            self._memory_state(schedule), self.desired_retention, max(0, round(elapsed))
        )

    @staticmethod
    def _pick(next_states, rating: Rating):
        return {
            Rating.AGAIN: next_states.again,
            Rating.HARD: next_states.hard,
            Rating.GOOD: next_states.good,
            Rating.EASY: next_states.easy,
        }[rating]

    def _clamp_interval(self, raw: float, fuzz: bool) -> float:
        interval = max(LEARNING_FLOOR_DAYS, min(float(self.maximum_interval), float(raw)))
        if fuzz and self.enable_fuzz and interval >= FUZZ_MIN_INTERVAL_DAYS:
            interval = max(
                FUZZ_MIN_INTERVAL_DAYS,
                min(float(self.maximum_interval), interval * self._rng.uniform(0.95, 1.05)),
            )
        return interval

    @staticmethod
    def _next_card_state(prior: CardState, rating: Rating, interval: float) -> CardState:
        if interval >= GRADUATION_THRESHOLD_DAYS:
            return CardState.REVIEW
        if prior == CardState.RELEARNING:
            return CardState.RELEARNING
        if prior == CardState.REVIEW:
            return CardState.RELEARNING if rating == Rating.AGAIN else CardState.REVIEW
        return CardState.LEARNING

    # ---------- SchedulingFunction ----------

    def new_schedule(self, now: datetime) -> Schedule:
        now = ensure_aware(now)
        return Schedule(due=now, added_to_queue_at=now)

    def apply_rating(
        self, schedule: Schedule, rating: Rating, now: datetime
    ) -> tuple[Schedule, RatingLog]:
        now = ensure_aware(now)
        rating = Rating(rating)
        elapsed = self._elapsed_days(schedule, now)

        chosen = self._pick(self._next_states(schedule, now), rating)
        interval = self._clamp_interval(chosen.interval, fuzz=True)

        lapses = schedule.lapses
        if rating == Rating.AGAIN and schedule.state == CardState.REVIEW:
            lapses += 1

        updated = schedule.model_copy(
            update={
                "due": add_days(now, interval),
                "stability": float(chosen.memory.stability),
                "difficulty": max(
                    FSRS_DIFFICULTY_MIN, min(FSRS_DIFFICULTY_MAX, float(chosen.memory.difficulty))
                ),
                "elapsed_days": elapsed,
                "scheduled_days": interval,
                "reps": schedule.reps + 1,
                "lapses": lapses,
                "state": self._next_card_state(schedule.state, rating, interval),
                "last_review": now,
            }
        )

        log = RatingLog(
            rating=rating,
            state=schedule.state,
            due=schedule.due,
            stability=schedule.stability,
            difficulty=schedule.difficulty,
            elapsed_days=elapsed,
            last_elapsed_days=schedule.elapsed_days,
            scheduled_days=schedule.scheduled_days,
            last_review=schedule.last_review,
            review=now,
        )
        logger.debug(
            f"[fsrs] {rating.label}: {schedule.state.label} -> {updated.state.label}, "
            f"interval {interval:.3f}d"
        )
        return updated, log

    def rollback(self, schedule: Schedule, log: RatingLog | ReviewLog) -> Schedule:
        lapses = schedule.lapses
        if log.rating == Rating.AGAIN and log.state == CardState.REVIEW:
            lapses = max(0, lapses - 1)

        return schedule.model_copy(
            update={
                "due": log.due,
                "stability": log.stability,
                "difficulty": log.difficulty,
                "elapsed_days": log.last_elapsed_days,
                "scheduled_days": log.scheduled_days,
                "reps": max(0, schedule.reps - 1),
                "lapses": lapses,
                "state": log.state,
                "last_review": log.last_review,
            }
        )

    def preview_all_ratings(self, schedule: Schedule, now: datetime) -> dict[Rating, PreviewEntry]:
        now = ensure_aware(now)
        next_states = self._next_states(schedule, now)
        preview: dict[Rating, PreviewEntry] = {}
        for rating in Rating:
            interval = self._clamp_interval(self._pick(next_states, rating).interval, fuzz=False)
            preview[rating] = PreviewEntry(
                rating=rating,
                due=add_days(now, interval),
                interval_days=interval,
                interval_text=format_interval(interval),
                state=self._next_card_state(schedule.state, rating, interval),
            )
        return preview

    def retrievability(self, schedule: Schedule, now: datetime) -> float:
        if schedule.state == CardState.NEW:
            return 0.0
        if schedule.stability <= 0:
            return 1.0 if schedule.reps > 0 else 0.0
        if schedule.last_review is None:
            return 1.0
        elapsed = days_between(schedule.last_review, now)
        if elapsed <= 0:
            return 1.0
        return (1.0 + FACTOR * elapsed / schedule.stability) ** DECAY
