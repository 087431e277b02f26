"""
Ports (interfaces) for the collaborators mnemo depends on.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .models import PreviewEntry, Rating, RatingLog, ReviewLog, Schedule


@dataclass(frozen=True)
class VaultItem:
    """A note as seen by the core: a path plus file timestamps."""

    path: str
    ctime: datetime
    mtime: datetime

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def basename(self) -> str:
        name = self.name
        return name.rsplit(".", 1)[0] if "." in name else name

    @property
    def extension(self) -> str:
        name = self.name
        return name.rsplit(".", 1)[-1].lower() if "." in name else ""

    @property
    def folder(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""


@dataclass
class ItemMetadata:
    """Structured metadata for a note: frontmatter plus inline tags."""

    frontmatter: dict[str, Any] = field(default_factory=dict)
    inline_tags: list[str] = field(default_factory=list)


class VaultEventType(str, Enum):
    CREATE = "create"
    RENAME = "rename"
    DELETE = "delete"


@dataclass(frozen=True)
class VaultEvent:
    type: VaultEventType
    path: str
    old_path: str | None = None


VaultListener = Callable[[VaultEvent], None]


class ItemCollection(ABC):
    """
    Port for the live, externally mutating set of notes.

    Implementations:
        - FileSystemVault: a directory tree of Markdown files.
    """

    @abstractmethod
    def list_items(self) -> Iterable[VaultItem]:
        """Enumerate every item currently in the collection."""

    @abstractmethod
    def get_item(self, path: str) -> VaultItem | None:
        """Return the item at `path`, or None if it does not exist."""

    @abstractmethod
    def get_metadata(self, item: VaultItem) -> ItemMetadata | None:
        """Return parsed metadata, or None if it cannot be read."""

    @abstractmethod
    def subscribe(self, listener: VaultListener) -> Callable[[], None]:
        """Register for create/rename/delete events. Returns an unsubscribe callable."""

    def exists(self, path: str) -> bool:
        return self.get_item(path) is not None


class SchedulingFunction(ABC):
    """
    Port for the memory model. The core never looks inside the formula.

    Implementations:
        - FsrsScheduler: FSRS via fsrs_rs_python.
    """

    @abstractmethod
    def new_schedule(self, now: datetime) -> Schedule:
        """A fresh, never-reviewed schedule due at `now`."""

    @abstractmethod
    def apply_rating(
        self, schedule: Schedule, rating: Rating, now: datetime
    ) -> tuple[Schedule, RatingLog]:
        """Return the updated schedule and a log of the pre-review state."""

    @abstractmethod
    def rollback(self, schedule: Schedule, log: RatingLog | ReviewLog) -> Schedule:
        """Return the schedule as it was before `log` was applied."""

    @abstractmethod
    def preview_all_ratings(self, schedule: Schedule, now: datetime) -> dict[Rating, PreviewEntry]:
        """Hypothetical outcome for each rating. Must not mutate `schedule`."""

    @abstractmethod
    def retrievability(self, schedule: Schedule, now: datetime) -> float:
        """Probability of recall in [0, 1]."""


class StorageBackend(ABC):
    """
    Port for durable storage of the document.

    Implementations:
        - JsonFileBackend: a JSON file plus rotating backups.
    """

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        """Return the raw document, or None on first run.

        Raises CorruptedDocumentError if the stored bytes cannot be decoded.
        """

    @abstractmethod
    def save(self, document: dict[str, Any]) -> None:
        """Persist the raw document."""

    @abstractmethod
    def backup(self, document: Any, reason: str = "") -> str | None:
        """Store a backup snapshot and return its id."""

    @abstractmethod
    def list_backups(self) -> list[str]:
        """Backup ids, newest first."""
