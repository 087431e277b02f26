"""
Session Manager: the review session state machine.

    Idle --start_session--> Active --(last item rated/skipped | end_session)--> Idle

The review queue is a snapshot taken at start and never reordered. Only one
session exists at a time and it is never persisted.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from mnemo.application.card_manager import CardManager
from mnemo.application.queue_manager import QueueManager
from mnemo.application.utils.dates import utcnow
from mnemo.application.utils.ids import generate_session_id
from mnemo.domain.errors import ExternalInconsistencyError, InvalidStateError, NotFoundError
from mnemo.domain.models import PreviewEntry, Rating, ReviewLog, Schedule
from mnemo.domain.ports import ItemCollection
from mnemo.domain.session import (
    Session,
    SessionProgress,
    SessionSummary,
    UndoEntry,
    UndoStack,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


StateListener = Callable[["SessionManager"], None]


class SessionManager:
    def __init__(
        self,
        cards: CardManager,
        queues: QueueManager,
        vault: ItemCollection,
        clock: Callable[[], datetime] = utcnow,
        sync_on_start: bool = True,
        opener: Callable[[str], None] | None = None,
    ):
        self.cards = cards
        self.queues = queues
        self.vault = vault
        self.clock = clock
        self.sync_on_start = sync_on_start
        self.opener = opener

        self._session: Session | None = None
        self._active_item: str | None = None
        self._listeners: list[StateListener] = []
        self.last_summary: SessionSummary | None = None
        self.last_inconsistency: ExternalInconsistencyError | None = None

    # ---------- State ----------

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self._session is not None else SessionState.IDLE

    @property
    def is_active(self) -> bool:
        return self._session is not None

    def _require_active(self) -> Session:
        if self._session is None:
            raise InvalidStateError("No review session is active")
        return self._session

    @property
    def current_item_path(self) -> str | None:
        return self._session.current_item_path if self._session else None

    @property
    def progress(self) -> SessionProgress:
        if self._session is None:
            return SessionProgress(current=0, total=0, percentage=0)
        total = self._session.total
        current = min(self._session.current_index, total)
        percentage = round(current / total * 100) if total else 0
        return SessionProgress(current=current, total=total, percentage=percentage)

    @property
    def can_undo(self) -> bool:
        return self._session is not None and bool(self._session.undo_stack)

    @property
    def can_go_back(self) -> bool:
        return self._session is not None and self._session.current_index > 0

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # ---------- Current item ----------

    def current_schedule(self) -> Schedule | None:
        session = self._session
        if session is None or session.current_item_path is None:
            return None
        return self.cards.get_schedule(session.current_item_path, session.queue_id)

    def current_scheduling_preview(self) -> dict[Rating, PreviewEntry]:
        session = self._require_active()
        path = session.current_item_path
        if path is None:
            return {}
        return self.cards.get_scheduling_preview(path, session.queue_id)

    def current_retrievability(self) -> float | None:
        session = self._session
        if session is None or session.current_item_path is None:
            return None
        return self.cards.get_retrievability(session.current_item_path, session.queue_id)

    # ---------- Transitions ----------

    def start_session(self, queue_id: str) -> Session:
        if self._session is not None:
            raise InvalidStateError("A review session is already active")
        if self.queues.get_queue(queue_id) is None:
            raise NotFoundError(f"Queue not found: {queue_id}")

        if self.sync_on_start:
            self.queues.sync_queue(queue_id)

        due = self.queues.get_due_notes(queue_id)
        if not due:
            raise InvalidStateError(f"No notes are due in queue {queue_id}")

        self._session = Session(
            session_id=generate_session_id(),
            queue_id=queue_id,
            review_queue=[card.item_path for card in due],
            started_at=self.clock(),
            undo_stack=UndoStack(),
        )
        self.last_summary = None
        logger.info(
            f"[session] Started {self._session.session_id} on {queue_id} with {len(due)} note(s)"
        )
        self._notify()
        return self._session

    def _advance(self, session: Session) -> None:
        session.current_index += 1
        # Items removed mid-session are passed over instead of stalling the session.
        while not session.is_complete:
            path = session.review_queue[session.current_index]
            if self.cards.get_schedule(path, session.queue_id) is not None:
                break
            logger.info(f"[session] Skipping {path}: no longer scheduled")
            session.current_index += 1
            session.skipped += 1

        if session.is_complete:
            self._finish(completed=True)
        else:
            self._notify()

    def rate(self, rating: Rating) -> ReviewLog | None:
        """
        Rate the current item and move on. If the item disappeared, the
        session skips past it and returns None.
        """
        session = self._require_active()
        path = session.current_item_path
        if path is None:
            raise InvalidStateError("Session has no current item")

        prior = self.cards.get_schedule(path, session.queue_id)
        if prior is None or not self.vault.exists(path):
            self.last_inconsistency = ExternalInconsistencyError(f"{path} no longer exists")
            logger.warning(f"[session] {self.last_inconsistency}; skipping it")
            session.skipped += 1
            self._advance(session)
            return None

        prior = prior.model_copy(deep=True)
        log = self.cards.update_card_schedule(
            path, session.queue_id, Rating(rating), session.session_id
        )
        session.undo_stack.push(UndoEntry(item_path=path, prior_schedule=prior, review_log=log))
        session.ratings[log.rating] += 1
        self._advance(session)
        return log

    def skip(self) -> None:
        session = self._require_active()
        session.skipped += 1
        self._advance(session)

    def go_back(self) -> None:
        session = self._require_active()
        if session.current_index <= 0:
            raise InvalidStateError("Already at the first note of the session")
        session.current_index -= 1
        self._notify()

    def undo_last_rating(self) -> UndoEntry:
        session = self._require_active()
        entry = session.undo_stack.peek()
        if entry is None:
            raise InvalidStateError("Nothing to undo")

        try:
            self.cards.rollback(entry.item_path, session.queue_id, entry.review_log)
        except NotFoundError:
            # The card is gone; this entry can never be undone.
            session.undo_stack.pop()
            raise
        session.undo_stack.pop()

        if session.ratings[entry.review_log.rating] > 0:
            session.ratings[entry.review_log.rating] -= 1
        if entry.item_path in session.review_queue:
            session.current_index = session.review_queue.index(entry.item_path)
        else:
            session.current_index = max(0, session.current_index - 1)

        logger.info(f"[session] Undid {entry.review_log.rating.label} on {entry.item_path}")
        self._notify()
        return entry

    def end_session(self) -> SessionSummary | None:
        if self._session is None:
            return None
        return self._finish(completed=False)

    def _finish(self, completed: bool) -> SessionSummary:
        session = self._require_active()
        summary = SessionSummary(
            session_id=session.session_id,
            queue_id=session.queue_id,
            total=session.total,
            reviewed=session.reviewed,
            skipped=session.skipped,
            ratings=dict(session.ratings),
            completed=completed,
            started_at=session.started_at,
            ended_at=self.clock(),
        )
        session.undo_stack.clear()
        self._session = None
        self.last_summary = summary
        logger.info(
            f"[session] {'Completed' if completed else 'Ended'} {summary.session_id}: "
            f"{summary.reviewed}/{summary.total} reviewed, {summary.skipped} skipped"
        )
        self._notify()
        return summary

    # ---------- Host view ----------

    def set_active_item(self, path: str | None) -> None:
        """Record which item the host is currently showing."""
        self._active_item = path

    def is_current_note_expected(self) -> bool:
        """True when the host shows the item the session expects to be rated."""
        path = self.current_item_path
        return path is not None and self._active_item == path

    def bring_back(self) -> str:
        """Re-focus the expected item. Returns its path."""
        self._require_active()
        path = self.current_item_path
        if path is None:
            raise InvalidStateError("Session has no current item")
        if self.opener is not None:
            self.opener(path)
        self._active_item = path
        return path

    def handle_rename(self, old_path: str, new_path: str) -> None:
        """Keep the session snapshot pointing at renamed items."""
        if self._active_item == old_path:
            self._active_item = new_path
        session = self._session
        if session is None:
            return
        session.review_queue = [new_path if p == old_path else p for p in session.review_queue]
        session.undo_stack.retarget(old_path, new_path)
