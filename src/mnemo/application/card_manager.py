"""
Card Manager: per-item scheduling records, one Schedule per queue.

Every mutation writes through the DataStore. A Card never exists without at
least one Schedule; removing the last one removes the Card.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from mnemo.application.utils.dates import end_of_day, start_of_day, utcnow
from mnemo.application.utils.ids import generate_id, generate_review_id
from mnemo.domain.errors import ConflictError, NotFoundError
from mnemo.domain.models import Card, PreviewEntry, Rating, ReviewLog, Schedule
from mnemo.domain.ports import SchedulingFunction
from mnemo.infrastructure.store import DataStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class CardManager:
    def __init__(
        self,
        store: DataStore,
        scheduler: SchedulingFunction,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.scheduler = scheduler
        self.clock = clock

    # ---------- Lookup ----------

    def get_card(self, item_path: str) -> Card | None:
        return self.store.get_card(item_path)

    def has_card(self, item_path: str) -> bool:
        return self.store.get_card(item_path) is not None

    def get_schedule(self, item_path: str, queue_id: str) -> Schedule | None:
        card = self.store.get_card(item_path)
        return card.schedules.get(queue_id) if card else None

    def _require_schedule(self, item_path: str, queue_id: str) -> tuple[Card, Schedule]:
        card = self.store.get_card(item_path)
        if card is None:
            raise NotFoundError(f"No card for {item_path}")
        schedule = card.schedules.get(queue_id)
        if schedule is None:
            raise NotFoundError(f"{item_path} has no schedule in queue {queue_id}")
        return card, schedule

    # ---------- Creation / removal ----------

    def create_card(self, item_path: str, queue_id: str) -> Card:
        """Add a New schedule for (item, queue). Raises ConflictError if one exists."""
        with self.store.transaction():
            now = self.clock()
            card = self.store.get_card(item_path)
            if card is not None and queue_id in card.schedules:
                raise ConflictError(f"{item_path} is already in queue {queue_id}")

            if card is None:
                card = Card(item_path=item_path, item_id=generate_id(), created_at=now)
            card.schedules[queue_id] = self.scheduler.new_schedule(now)
            card.last_modified = now
            self.store.set_card(card)

        logger.debug(f"[cards] Added {item_path} to queue {queue_id}")
        return card

    def ensure_schedule(self, item_path: str, queue_id: str) -> bool:
        """Idempotent create. Returns True if a schedule was added."""
        with self.store.transaction():
            if self.get_schedule(item_path, queue_id) is not None:
                return False
            self.create_card(item_path, queue_id)
            return True

    def delete_card(self, item_path: str) -> Card | None:
        card = self.store.delete_card(item_path)
        if card is not None:
            logger.debug(f"[cards] Deleted {item_path}")
        return card

    def remove_from_queue(self, item_path: str, queue_id: str) -> bool:
        """Drop one schedule, and the Card with it if it was the last."""
        with self.store.transaction():
            card = self.store.get_card(item_path)
            if card is None or queue_id not in card.schedules:
                return False
            del card.schedules[queue_id]
            card.last_modified = self.clock()
            # set_card drops a Card whose schedules are empty.
            self.store.set_card(card)
        return True

    def rename_card(self, old_path: str, new_path: str) -> Card | None:
        """Move a Card and its review history to a new path, keeping id and schedules."""
        if old_path == new_path:
            return self.store.get_card(old_path)
        with self.store.transaction():
            if self.store.get_card(old_path) is None:
                return None
            if self.store.get_card(new_path) is not None:
                raise ConflictError(f"A card already exists at {new_path}")
            card = self.store.rename_card(old_path, new_path)
            if card is not None:
                card.last_modified = self.clock()
            self.store.migrate_review_log_paths(old_path, new_path)
        logger.info(f"[cards] Renamed {old_path} -> {new_path}")
        return card

    # ---------- Rating ----------

    def update_card_schedule(
        self, item_path: str, queue_id: str, rating: Rating, session_id: str = ""
    ) -> ReviewLog:
        with self.store.transaction():
            card, schedule = self._require_schedule(item_path, queue_id)
            now = self.clock()
            updated, rating_log = self.scheduler.apply_rating(schedule, Rating(rating), now)

            card.schedules[queue_id] = updated
            card.last_modified = now
            self.store.set_card(card)

            log = ReviewLog(
                id=generate_review_id(),
                card_path=item_path,
                card_id=card.item_id,
                queue_id=queue_id,
                rating=rating_log.rating,
                state=rating_log.state,
                due=rating_log.due,
                stability=rating_log.stability,
                difficulty=rating_log.difficulty,
                elapsed_days=rating_log.elapsed_days,
                last_elapsed_days=rating_log.last_elapsed_days,
                scheduled_days=rating_log.scheduled_days,
                last_review=rating_log.last_review,
                review=rating_log.review,
                session_id=session_id,
            )
            self.store.add_review(log)

        logger.info(
            f"[cards] {item_path} rated {log.rating.label} in {queue_id}; "
            f"next due {updated.due.isoformat()}"
        )
        return log

    def rollback(self, item_path: str, queue_id: str, review_log: ReviewLog) -> Schedule:
        """
        Undo one rating. Only the newest non-undone log of the pair may be
        rolled back; anything else raises ConflictError and changes nothing.
        """
        with self.store.transaction():
            card, schedule = self._require_schedule(item_path, queue_id)
            latest = self.store.latest_active_review(card.item_id, queue_id)
            if latest is None or latest.id != review_log.id:
                raise ConflictError(
                    f"Review {review_log.id} is not the latest rating of {item_path} in {queue_id}"
                )

            restored = self.scheduler.rollback(schedule, latest)
            card.schedules[queue_id] = restored
            card.last_modified = self.clock()
            self.store.set_card(card)
            self.store.mark_review_undone(latest.id)

        logger.info(f"[cards] Rolled back {latest.rating.label} on {item_path} in {queue_id}")
        return restored

    # ---------- Queries ----------

    def get_cards_for_queue(self, queue_id: str) -> list[Card]:
        return [c for c in self.store.get_cards().values() if queue_id in c.schedules]

    def get_due_cards(self, queue_id: str, as_of: datetime | None = None) -> list[Card]:
        """Cards due in this queue on or before `as_of` (default: end of today)."""
        cutoff = as_of or end_of_day(self.clock())
        return [
            c for c in self.get_cards_for_queue(queue_id) if c.schedules[queue_id].due <= cutoff
        ]

    def get_overdue_cards(self, queue_id: str, now: datetime | None = None) -> list[Card]:
        """Cards due before the start of today."""
        today = start_of_day(now or self.clock())
        return [c for c in self.get_cards_for_queue(queue_id) if c.schedules[queue_id].due < today]

    def get_new_cards(self, queue_id: str) -> list[Card]:
        return [c for c in self.get_cards_for_queue(queue_id) if c.schedules[queue_id].is_new]

    def get_retrievability(self, item_path: str, queue_id: str) -> float | None:
        schedule = self.get_schedule(item_path, queue_id)
        if schedule is None:
            return None
        return self.scheduler.retrievability(schedule, self.clock())

    def get_scheduling_preview(self, item_path: str, queue_id: str) -> dict[Rating, PreviewEntry]:
        _, schedule = self._require_schedule(item_path, queue_id)
        return self.scheduler.preview_all_ratings(schedule, self.clock())

    def reviews_for_card(self, item_path: str) -> list[ReviewLog]:
        return self.store.get_reviews_for_card(item_path)
