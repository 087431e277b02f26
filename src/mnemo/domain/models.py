"""
Persisted domain models.

Everything in the stored document is a pydantic model with camelCase aliases.
Unknown keys are ignored and missing keys fall back to defaults, so an older or
newer document still loads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import (
    CURRENT_SCHEMA_VERSION,
    DAILY_LIMIT_MAX,
    DAILY_LIMIT_MIN,
    DEFAULT_ENABLE_FUZZ,
    DEFAULT_MAX_REVIEWS_PER_DAY,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_NEW_CARDS_PER_DAY,
    DEFAULT_REQUEST_RETENTION,
)
from .errors import ConflictError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MnemoModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        validate_assignment=False,
    )


# ---------- Enumerations ----------


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


class CardState(IntEnum):
    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class OrphanStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REMOVED = "removed"


class QueueOrderStrategy(str, Enum):
    MIXED_ANKI = "mixed-anki"
    DUE_OVERDUE_FIRST = "due-overdue-first"
    DUE_CHRONOLOGICAL = "due-chronological"
    STATE_PRIORITY = "state-priority"
    RETRIEVABILITY_ASC = "retrievability-asc"
    LOAD_BALANCING = "load-balancing"
    RANDOM = "random"
    DIFFICULTY_DESC = "difficulty-desc"
    DIFFICULTY_ASC = "difficulty-asc"


PropertyOperator = Literal["equals", "contains", "exists"]
SelectionMode = Literal["folder", "tag"]
SidebarPosition = Literal["left", "right"]


# ---------- Selection criteria (tagged union) ----------


class FolderCriteria(MnemoModel):
    type: Literal["folder"] = "folder"
    folders: list[str] = Field(default_factory=list)


class TagCriteria(MnemoModel):
    type: Literal["tag"] = "tag"
    tags: list[str] = Field(default_factory=list)


class CriterionConfig(MnemoModel):
    type: str
    params: dict[str, Any] = Field(default_factory=dict)


class CustomCriteria(MnemoModel):
    type: Literal["custom"] = "custom"
    custom_criteria: list[CriterionConfig] = Field(default_factory=list)


SelectionCriteria = Annotated[
    FolderCriteria | TagCriteria | CustomCriteria, Field(discriminator="type")
]


class PropertyMatch(MnemoModel):
    key: str
    value: str = ""
    operator: PropertyOperator = "equals"


# ---------- Settings ----------


class FsrsParams(MnemoModel):
    request_retention: float = Field(default=DEFAULT_REQUEST_RETENTION, ge=0.7, le=0.97)
    maximum_interval: int = Field(default=DEFAULT_MAXIMUM_INTERVAL, ge=1)
    enable_fuzz: bool = DEFAULT_ENABLE_FUZZ


class Settings(MnemoModel):
    # Note selection
    selection_mode: SelectionMode = "folder"
    tracked_folders: list[str] = Field(default_factory=list)
    tracked_tags: list[str] = Field(default_factory=list)

    # Exclusions
    excluded_note_names: list[str] = Field(default_factory=list)
    excluded_tags: list[str] = Field(default_factory=list)
    excluded_properties: list[PropertyMatch] = Field(default_factory=list)

    # Review
    queue_order: QueueOrderStrategy = QueueOrderStrategy.MIXED_ANKI
    new_cards_per_day: int = DEFAULT_NEW_CARDS_PER_DAY
    max_reviews_per_day: int = DEFAULT_MAX_REVIEWS_PER_DAY
    show_note_stats: bool = True
    show_predicted_intervals: bool = True
    show_session_stats: bool = True

    # UI
    sidebar_position: SidebarPosition = "right"

    fsrs_params: FsrsParams = Field(default_factory=FsrsParams)

    @field_validator("selection_mode", mode="before")
    @classmethod
    def _selection_mode(cls, v: Any) -> Any:
        return v if v in ("folder", "tag") else "folder"

    @field_validator("sidebar_position", mode="before")
    @classmethod
    def _sidebar_position(cls, v: Any) -> Any:
        return v if v in ("left", "right") else "right"

    @field_validator("queue_order", mode="before")
    @classmethod
    def _queue_order(cls, v: Any) -> Any:
        allowed = {s.value for s in QueueOrderStrategy}
        if isinstance(v, QueueOrderStrategy):
            return v
        return v if v in allowed else QueueOrderStrategy.MIXED_ANKI

    @field_validator(
        "tracked_folders", "tracked_tags", "excluded_note_names", "excluded_tags", mode="before"
    )
    @classmethod
    def _string_list(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, str)]

    @field_validator("excluded_properties", mode="before")
    @classmethod
    def _property_list(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        valid = []
        for item in v:
            if isinstance(item, PropertyMatch):
                valid.append(item)
            elif (
                isinstance(item, dict)
                and isinstance(item.get("key"), str)
                and item.get("operator") in ("equals", "contains", "exists")
            ):
                valid.append(item)
        return valid

    @field_validator("new_cards_per_day", "max_reviews_per_day", mode="before")
    @classmethod
    def _daily_limit(cls, v: Any, info) -> int:
        default = (
            DEFAULT_NEW_CARDS_PER_DAY
            if info.field_name == "new_cards_per_day"
            else DEFAULT_MAX_REVIEWS_PER_DAY
        )
        n = v if isinstance(v, int) and not isinstance(v, bool) else default
        return max(DAILY_LIMIT_MIN, min(DAILY_LIMIT_MAX, n))

    @field_validator("fsrs_params", mode="before")
    @classmethod
    def _fsrs_params(cls, v: Any) -> Any:
        return v if v is not None else {}


# ---------- Scheduling ----------


class Schedule(MnemoModel):
    """FSRS state of one card inside one queue."""

    due: datetime = Field(default_factory=_utcnow)
    stability: float = Field(default=0.0, ge=0)
    difficulty: float = Field(default=0.0, ge=0, le=10)
    elapsed_days: float = 0.0
    scheduled_days: float = 0.0
    reps: int = Field(default=0, ge=0)
    lapses: int = Field(default=0, ge=0)
    state: CardState = CardState.NEW
    last_review: datetime | None = None
    added_to_queue_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_new(self) -> bool:
        return self.state == CardState.NEW


class Card(MnemoModel):
    """One vault item's scheduling records across every queue it belongs to."""

    item_path: str
    item_id: str
    schedules: dict[str, Schedule] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    last_modified: datetime = Field(default_factory=_utcnow)


class QueueStats(MnemoModel):
    total_notes: int = 0
    new_notes: int = 0
    due_notes: int = 0
    overdue_notes: int = 0
    reviewed_today: int = 0
    last_updated: datetime = Field(default_factory=lambda: datetime.fromtimestamp(0, timezone.utc))


class Queue(MnemoModel):
    id: str
    name: str
    created_at: datetime = Field(default_factory=_utcnow)
    criteria: SelectionCriteria = Field(default_factory=FolderCriteria)
    stats: QueueStats = Field(default_factory=QueueStats)


class ReviewLog(MnemoModel):
    """
    Append-only record of one rating.

    The scheduling fields hold the values *before* the rating was applied;
    that is what makes an exact rollback possible.
    """

    id: str
    card_path: str
    card_id: str = ""
    queue_id: str
    rating: Rating
    state: CardState
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: float = 0.0
    last_elapsed_days: float = 0.0
    scheduled_days: float = 0.0
    last_review: datetime | None = None
    review: datetime
    session_id: str = ""
    undone: bool = False

    def mark_undone(self) -> None:
        if self.undone:
            raise ConflictError(f"Review {self.id} is already undone")
        self.undone = True


class OrphanResolution(MnemoModel):
    action: Literal["relink", "remove"]
    new_path: str | None = None
    resolved_at: datetime = Field(default_factory=_utcnow)


class OrphanRecord(MnemoModel):
    id: str
    original_path: str
    card_data: Card
    detected_at: datetime = Field(default_factory=_utcnow)
    status: OrphanStatus = OrphanStatus.PENDING
    resolution: OrphanResolution | None = None


class BackupEntry(MnemoModel):
    id: str
    timestamp: datetime
    data: dict[str, Any]


class Document(MnemoModel):
    """Root of the persisted state."""

    version: int = CURRENT_SCHEMA_VERSION
    settings: Settings = Field(default_factory=Settings)
    queues: list[Queue] = Field(default_factory=list)
    cards: dict[str, Card] = Field(default_factory=dict)
    reviews: list[ReviewLog] = Field(default_factory=list)
    orphans: list[OrphanRecord] = Field(default_factory=list)


# ---------- Results (not persisted) ----------


@dataclass
class SyncResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


@dataclass(frozen=True)
class RatingLog:
    """What the scheduling function reports about a single rating."""

    rating: Rating
    state: CardState
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: float
    last_elapsed_days: float
    scheduled_days: float
    last_review: datetime | None
    review: datetime


@dataclass(frozen=True)
class PreviewEntry:
    """Hypothetical outcome of one rating, used for button labels."""

    rating: Rating
    due: datetime
    interval_days: float
    interval_text: str
    state: CardState
