"""Identifier generation. Every id is a ULID so ids sort by creation time."""

from ulid import ULID


def generate_id() -> str:
    return str(ULID())


def generate_session_id() -> str:
    return f"session-{ULID()}"


def generate_review_id() -> str:
    return f"review-{ULID()}"
