"""
Review session value types.

A Session only lives in memory. It is created by SessionManager.start_session
and dropped on completion or end_session.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from .constants import MAX_UNDO_DEPTH
from .models import Rating, ReviewLog, Schedule


@dataclass(frozen=True)
class UndoEntry:
    item_path: str
    prior_schedule: Schedule
    review_log: ReviewLog


class UndoStack:
    """
    Bounded LIFO of ratings made during a session.

    Only the most recent entry is reachable, so a rollback can never be aimed
    at an older log. When full, the oldest entry is dropped.
    """

    def __init__(self, max_depth: int = MAX_UNDO_DEPTH):
        self._entries: deque[UndoEntry] = deque(maxlen=max_depth)

    def push(self, entry: UndoEntry) -> None:
        self._entries.append(entry)

    def pop(self) -> UndoEntry:
        return self._entries.pop()

    def peek(self) -> UndoEntry | None:
        return self._entries[-1] if self._entries else None

    def retarget(self, old_path: str, new_path: str) -> None:
        """Follow a rename of an item that has entries on the stack."""
        self._entries = deque(
            (
                UndoEntry(new_path, e.prior_schedule, e.review_log)
                if e.item_path == old_path
                else e
                for e in self._entries
            ),
            maxlen=self._entries.maxlen,
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


def _empty_ratings() -> dict[Rating, int]:
    return {r: 0 for r in Rating}


@dataclass
class Session:
    session_id: str
    queue_id: str
    review_queue: list[str]
    started_at: datetime
    current_index: int = 0
    ratings: dict[Rating, int] = field(default_factory=_empty_ratings)
    undo_stack: UndoStack = field(default_factory=UndoStack)
    skipped: int = 0

    @property
    def total(self) -> int:
        return len(self.review_queue)

    @property
    def reviewed(self) -> int:
        return sum(self.ratings.values())

    @property
    def is_complete(self) -> bool:
        return self.current_index >= len(self.review_queue)

    @property
    def current_item_path(self) -> str | None:
        if 0 <= self.current_index < len(self.review_queue):
            return self.review_queue[self.current_index]
        return None


@dataclass(frozen=True)
class SessionProgress:
    current: int
    total: int
    percentage: int


@dataclass(frozen=True)
class SessionSummary:
    """What a finished session leaves behind."""

    session_id: str
    queue_id: str
    total: int
    reviewed: int
    skipped: int
    ratings: dict[Rating, int]
    completed: bool
    started_at: datetime
    ended_at: datetime
