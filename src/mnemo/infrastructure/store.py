"""
DataStore: the single source of truth for persisted state.

The whole document lives in memory. Mutations apply immediately and mark the
store dirty; a debounced timer writes the document through the StorageBackend.
`force_flush()` bypasses the debounce for shutdown and tests.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from mnemo.application.utils.retry import RetryConfig, call_with_retry
from mnemo.domain.constants import (
    CURRENT_SCHEMA_VERSION,
    MIN_SAVE_INTERVAL_MS,
    SAVE_DEBOUNCE_MS,
    SAVE_RETRY_ATTEMPTS,
    SAVE_RETRY_BASE_DELAY,
)
from mnemo.domain.errors import (
    ConflictError,
    CorruptedDocumentError,
    NotFoundError,
    PersistenceError,
)
from mnemo.domain.models import (
    Card,
    Document,
    OrphanRecord,
    OrphanStatus,
    Queue,
    QueueStats,
    ReviewLog,
    Settings,
)
from mnemo.domain.ports import StorageBackend

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


# ---------- Migrations ----------


def _migrate_v0_to_v1(raw: dict[str, Any]) -> dict[str, Any]:
    """v0 documents keyed cards by `notePath`/`noteId`."""

    def rename_keys(card: Any) -> Any:
        if not isinstance(card, dict):
            return card
        if "notePath" in card and "itemPath" not in card:
            card["itemPath"] = card.pop("notePath")
        if "noteId" in card and "itemId" not in card:
            card["itemId"] = card.pop("noteId")
        return card

    cards = raw.get("cards")
    if isinstance(cards, dict):
        raw["cards"] = {path: rename_keys(card) for path, card in cards.items()}
    orphans = raw.get("orphans")
    if isinstance(orphans, list):
        for orphan in orphans:
            if isinstance(orphan, dict):
                rename_keys(orphan.get("cardData"))
    return raw


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    0: _migrate_v0_to_v1,
}


def run_migrations(raw: dict[str, Any]) -> dict[str, Any]:
    version = raw.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        version = 0
    while version < CURRENT_SCHEMA_VERSION:
        migrate = MIGRATIONS.get(version)
        if migrate is not None:
            logger.info(f"[store] Migrating document v{version} -> v{version + 1}")
            raw = migrate(raw)
        version += 1
    raw["version"] = CURRENT_SCHEMA_VERSION
    return raw


# ---------- Validation ----------


def _validate_each(model: type[M], entries: Any, kind: str) -> list[M]:
    """Validate list entries one by one, dropping the ones that fail."""
    if not isinstance(entries, list):
        return []
    valid: list[M] = []
    for entry in entries:
        try:
            valid.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"[store] Skipping invalid {kind}: {e.error_count()} error(s)")
    return valid


def validate_document(raw: Any) -> Document:
    """
    Build a Document from raw JSON data.

    Structural failure (not a mapping) raises CorruptedDocumentError. Individual
    bad entries are skipped so one broken card never costs the whole document.
    """
    if not isinstance(raw, dict):
        raise CorruptedDocumentError(f"Document root must be an object, got {type(raw).__name__}")

    raw = run_migrations(dict(raw))

    try:
        settings = Settings.model_validate(raw.get("settings") or {})
    except ValidationError:
        logger.warning("[store] Invalid settings, falling back to defaults")
        settings = Settings()

    cards: dict[str, Card] = {}
    raw_cards = raw.get("cards")
    if isinstance(raw_cards, dict):
        for path, entry in raw_cards.items():
            try:
                card = Card.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"[store] Skipping invalid card {path}: {e.error_count()} error(s)")
                continue
            if not card.schedules:
                logger.warning(f"[store] Dropping card without schedules: {path}")
                continue
            card.item_path = path
            cards[path] = card

    return Document(
        version=CURRENT_SCHEMA_VERSION,
        settings=settings,
        queues=_validate_each(Queue, raw.get("queues"), "queue"),
        cards=cards,
        reviews=_validate_each(ReviewLog, raw.get("reviews"), "review log"),
        orphans=_validate_each(OrphanRecord, raw.get("orphans"), "orphan"),
    )


# ---------- Store ----------


class DataStore:
    """
    In-memory document with debounced write-through persistence.

    All access goes through one re-entrant lock, so a multi-threaded host can
    share the store. `transaction()` groups several mutations so the debounced
    save sees either all of them or none.
    """

    def __init__(
        self,
        backend: StorageBackend,
        debounce_ms: int = SAVE_DEBOUNCE_MS,
        min_interval_ms: int = MIN_SAVE_INTERVAL_MS,
        autosave: bool = True,
        retry: RetryConfig | None = None,
    ):
        self._backend = backend
        self._debounce = debounce_ms / 1000.0
        self._min_interval = min_interval_ms / 1000.0
        self._autosave = autosave
        self._retry = retry or RetryConfig(
            max_attempts=SAVE_RETRY_ATTEMPTS, base_delay=SAVE_RETRY_BASE_DELAY
        )

        self._doc = Document()
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._dirty = False
        self._txn_depth = 0
        self._last_save = 0.0
        self._initialized = False
        self._last_error: PersistenceError | None = None

    # ---------- Lifecycle ----------

    def initialize(self) -> None:
        """Load the document. Corruption falls back to defaults after a backup."""
        with self._lock:
            try:
                raw = self._backend.load()
            except CorruptedDocumentError as e:
                logger.error(f"[store] Stored document is unreadable, starting fresh: {e}")
                raw = None
                self._dirty = True

            if raw is None:
                self._doc = Document()
            else:
                try:
                    self._doc = validate_document(raw)
                except CorruptedDocumentError as e:
                    logger.error(f"[store] Document failed validation, starting fresh: {e}")
                    self._backend.backup(raw, reason="corrupt")
                    self._doc = Document()
                    self._dirty = True
            self._initialized = True
            logger.info(
                f"[store] Loaded {len(self._doc.cards)} cards, {len(self._doc.queues)} queues, "
                f"{len(self._doc.reviews)} reviews"
            )

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def last_error(self) -> PersistenceError | None:
        """The most recent background save failure, cleared by the next good save."""
        return self._last_error

    def close(self) -> None:
        self.force_flush()

    # ---------- Persistence ----------

    @contextmanager
    def transaction(self) -> Iterator["DataStore"]:
        """Hold the lock across several mutations and defer the save until the end."""
        with self._lock:
            self._txn_depth += 1
            try:
                yield self
            finally:
                self._txn_depth -= 1
                if self._txn_depth == 0 and self._dirty:
                    self._schedule_save()

    def mark_dirty(self) -> None:
        with self._lock:
            self._dirty = True
            if self._txn_depth == 0:
                self._schedule_save()

    def _schedule_save(self) -> None:
        if not self._autosave:
            return
        if self._timer is not None:
            self._timer.cancel()
        since_last = time.monotonic() - self._last_save
        delay = max(self._debounce, self._min_interval - since_last)
        self._timer = threading.Timer(delay, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        try:
            self.save()
        except PersistenceError as e:
            self._last_error = e
            logger.error(f"[store] Background save failed, changes kept in memory: {e}")

    def _serialize(self) -> dict[str, Any]:
        return self._doc.model_dump(mode="json", by_alias=True)

    def save(self) -> None:
        """Write the document if dirty. Raises PersistenceError after retries."""
        with self._save_lock:
            with self._lock:
                if not self._dirty:
                    return
                payload = self._serialize()
                self._dirty = False
            try:
                call_with_retry(
                    lambda: self._backend.save(payload), self._retry, description="store save"
                )
            except self._retry.exceptions as e:
                with self._lock:
                    self._dirty = True
                raise PersistenceError(f"Could not save document: {e}") from e
            self._last_save = time.monotonic()
            self._last_error = None
            logger.debug("[store] Document saved")

    def force_flush(self) -> None:
        """Cancel any pending debounce and write now if anything changed."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.save()

    def snapshot(self) -> Document:
        """A deep copy of the current document."""
        with self._lock:
            return self._doc.model_copy(deep=True)

    # ---------- Settings ----------

    def get_settings(self) -> Settings:
        return self._doc.settings

    def update_settings(self, **changes: Any) -> Settings:
        with self._lock:
            merged = {**self._doc.settings.model_dump(), **changes}
            self._doc.settings = Settings.model_validate(merged)
            self.mark_dirty()
            return self._doc.settings

    # ---------- Queues ----------

    def get_queues(self) -> list[Queue]:
        return list(self._doc.queues)

    def get_queue(self, queue_id: str) -> Queue | None:
        return next((q for q in self._doc.queues if q.id == queue_id), None)

    def add_queue(self, queue: Queue) -> None:
        with self._lock:
            if self.get_queue(queue.id) is not None:
                raise ConflictError(f"Queue {queue.id} already exists")
            self._doc.queues.append(queue)
            self.mark_dirty()

    def update_queue(self, queue_id: str, **changes: Any) -> Queue:
        with self._lock:
            queue = self.get_queue(queue_id)
            if queue is None:
                raise NotFoundError(f"Queue not found: {queue_id}")
            for key, value in changes.items():
                setattr(queue, key, value)
            self.mark_dirty()
            return queue

    def set_queue_stats(self, queue_id: str, stats: QueueStats) -> None:
        """Refresh the advisory stats cache. Rides along with the next real write."""
        with self._lock:
            queue = self.get_queue(queue_id)
            if queue is None:
                raise NotFoundError(f"Queue not found: {queue_id}")
            queue.stats = stats

    def delete_queue(self, queue_id: str) -> bool:
        with self._lock:
            before = len(self._doc.queues)
            self._doc.queues = [q for q in self._doc.queues if q.id != queue_id]
            if len(self._doc.queues) == before:
                return False
            self.mark_dirty()
            return True

    # ---------- Cards ----------

    def get_cards(self) -> dict[str, Card]:
        return dict(self._doc.cards)

    def get_card(self, item_path: str) -> Card | None:
        return self._doc.cards.get(item_path)

    def set_card(self, card: Card) -> None:
        with self._lock:
            if not card.schedules:
                self._doc.cards.pop(card.item_path, None)
            else:
                self._doc.cards[card.item_path] = card
            self.mark_dirty()

    def delete_card(self, item_path: str) -> Card | None:
        with self._lock:
            card = self._doc.cards.pop(item_path, None)
            if card is not None:
                self.mark_dirty()
            return card

    def rename_card(self, old_path: str, new_path: str) -> Card | None:
        with self._lock:
            card = self._doc.cards.pop(old_path, None)
            if card is None:
                return None
            card.item_path = new_path
            self._doc.cards[new_path] = card
            self.mark_dirty()
            return card

    # ---------- Reviews ----------

    def get_reviews(self) -> list[ReviewLog]:
        return list(self._doc.reviews)

    def get_review(self, review_id: str) -> ReviewLog | None:
        return next((r for r in self._doc.reviews if r.id == review_id), None)

    def get_reviews_for_card(self, item_path: str) -> list[ReviewLog]:
        return [r for r in self._doc.reviews if r.card_path == item_path]

    def add_review(self, log: ReviewLog) -> None:
        with self._lock:
            self._doc.reviews.append(log)
            self.mark_dirty()

    def mark_review_undone(self, review_id: str) -> ReviewLog:
        with self._lock:
            log = self.get_review(review_id)
            if log is None:
                raise NotFoundError(f"Review log not found: {review_id}")
            log.mark_undone()
            self.mark_dirty()
            return log

    def latest_active_review(self, card_id: str, queue_id: str) -> ReviewLog | None:
        """Most recent non-undone log for an (item, queue) pair."""
        for log in reversed(self._doc.reviews):
            if log.card_id == card_id and log.queue_id == queue_id and not log.undone:
                return log
        return None

    def migrate_review_log_paths(self, old_path: str, new_path: str) -> int:
        with self._lock:
            count = 0
            for log in self._doc.reviews:
                if log.card_path == old_path:
                    log.card_path = new_path
                    count += 1
            if count:
                self.mark_dirty()
            return count

    # ---------- Orphans ----------

    def get_orphans(self) -> list[OrphanRecord]:
        return list(self._doc.orphans)

    def get_orphan(self, orphan_id: str) -> OrphanRecord | None:
        return next((o for o in self._doc.orphans if o.id == orphan_id), None)

    def get_pending_orphans(self) -> list[OrphanRecord]:
        return [o for o in self._doc.orphans if o.status == OrphanStatus.PENDING]

    def add_orphan(self, orphan: OrphanRecord) -> None:
        with self._lock:
            self._doc.orphans.append(orphan)
            self.mark_dirty()

    def update_orphan(self, orphan: OrphanRecord) -> None:
        with self._lock:
            for i, existing in enumerate(self._doc.orphans):
                if existing.id == orphan.id:
                    self._doc.orphans[i] = orphan
                    self.mark_dirty()
                    return
            raise NotFoundError(f"Orphan not found: {orphan.id}")

    def cleanup_resolved_orphans(self) -> int:
        """Drop orphans in a terminal status. Returns how many were removed."""
        with self._lock:
            before = len(self._doc.orphans)
            self._doc.orphans = [o for o in self._doc.orphans if o.status == OrphanStatus.PENDING]
            removed = before - len(self._doc.orphans)
            if removed:
                self.mark_dirty()
            return removed
