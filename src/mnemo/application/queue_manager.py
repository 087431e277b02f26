"""
Queue Manager: queue definitions, vault sync, stats and due ordering.

A queue is a named selection over the vault. Syncing reconciles the queue's
schedules with what the selection currently matches:

    matching, no schedule          -> add a New schedule
    schedule, item still matching  -> unchanged
    schedule, item not matching    -> remove the schedule
    schedule, item gone            -> orphan the card

Schedules whose queue no longer exists are purged at the start of every sync.
"""

import logging
import random
from collections.abc import Callable
from datetime import datetime, timedelta

from mnemo.application.card_manager import CardManager
from mnemo.application.ordering import DailyBudget, order_entries
from mnemo.application.orphans import OrphanDetector
from mnemo.application.selection import ExclusionRules, matches
from mnemo.application.utils.dates import end_of_day, start_of_day, utcnow
from mnemo.application.utils.ids import generate_id
from mnemo.domain.constants import DEFAULT_QUEUE_ID, DEFAULT_QUEUE_NAME, STATS_CACHE_TTL_SECONDS
from mnemo.domain.errors import ConflictError, NotFoundError
from mnemo.domain.models import (
    Card,
    CardState,
    FolderCriteria,
    Queue,
    QueueOrderStrategy,
    QueueStats,
    ReviewLog,
    SelectionCriteria,
    SyncResult,
    TagCriteria,
)
from mnemo.domain.ports import ItemCollection, VaultItem
from mnemo.infrastructure.store import DataStore

logger = logging.getLogger(__name__)


class QueueManager:
    def __init__(
        self,
        store: DataStore,
        cards: CardManager,
        vault: ItemCollection,
        orphans: OrphanDetector | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.cards = cards
        self.vault = vault
        self.orphans = orphans
        self.clock = clock
        self.rng = rng or random.Random()

    # ---------- CRUD ----------

    def _require(self, queue_id: str) -> Queue:
        queue = self.store.get_queue(queue_id)
        if queue is None:
            raise NotFoundError(f"Queue not found: {queue_id}")
        return queue

    def _check_name_free(self, name: str, ignore_id: str | None = None) -> None:
        wanted = name.strip().lower()
        for queue in self.store.get_queues():
            if queue.id != ignore_id and queue.name.strip().lower() == wanted:
                raise ConflictError(f"A queue named '{queue.name}' already exists")

    def create_queue(
        self, name: str, criteria: SelectionCriteria, queue_id: str | None = None
    ) -> Queue:
        name = name.strip()
        if not name:
            raise ValueError("Queue name must not be empty")
        self._check_name_free(name)

        queue = Queue(
            id=queue_id or generate_id(), name=name, created_at=self.clock(), criteria=criteria
        )
        self.store.add_queue(queue)
        logger.info(f"[queues] Created queue '{name}' ({queue.id})")
        return queue

    def get_queue(self, queue_id: str) -> Queue | None:
        return self.store.get_queue(queue_id)

    def get_all_queues(self) -> list[Queue]:
        return self.store.get_queues()

    def find_queue(self, id_or_name: str) -> Queue | None:
        """Look a queue up by id, falling back to a case-insensitive name match."""
        queue = self.store.get_queue(id_or_name)
        if queue is not None:
            return queue
        wanted = id_or_name.strip().lower()
        return next((q for q in self.store.get_queues() if q.name.lower() == wanted), None)

    def rename_queue(self, queue_id: str, new_name: str) -> Queue:
        self._require(queue_id)
        new_name = new_name.strip()
        self._check_name_free(new_name, ignore_id=queue_id)
        return self.store.update_queue(queue_id, name=new_name)

    def update_criteria(self, queue_id: str, criteria: SelectionCriteria) -> SyncResult:
        self._require(queue_id)
        self.store.update_queue(queue_id, criteria=criteria)
        return self.sync_queue(queue_id)

    def delete_queue(self, queue_id: str, remove_schedule_data: bool = False) -> None:
        """
        Remove a queue. With `remove_schedule_data`, its schedules go immediately;
        otherwise they stay until the next sync purges them.
        """
        queue = self._require(queue_id)
        with self.store.transaction():
            if remove_schedule_data:
                for card in self.cards.get_cards_for_queue(queue_id):
                    self.cards.remove_from_queue(card.item_path, queue_id)
            self.store.delete_queue(queue_id)
        logger.info(
            f"[queues] Deleted queue '{queue.name}' (schedules removed: {remove_schedule_data})"
        )

    # ---------- Default queue ----------

    def _settings_criteria(self) -> SelectionCriteria:
        settings = self.store.get_settings()
        if settings.selection_mode == "tag":
            return TagCriteria(tags=list(settings.tracked_tags))
        return FolderCriteria(folders=list(settings.tracked_folders))

    def ensure_default_queue(self) -> Queue:
        """The settings-driven queue. Created on demand; criteria follow settings."""
        criteria = self._settings_criteria()
        queue = self.store.get_queue(DEFAULT_QUEUE_ID)
        if queue is None:
            queue = Queue(
                id=DEFAULT_QUEUE_ID,
                name=DEFAULT_QUEUE_NAME,
                created_at=self.clock(),
                criteria=criteria,
            )
            self.store.add_queue(queue)
            logger.info("[queues] Created default queue")
        elif queue.criteria != criteria:
            queue = self.store.update_queue(DEFAULT_QUEUE_ID, criteria=criteria)
        return queue

    def sync_default_queue(self) -> SyncResult:
        return self.sync_queue(self.ensure_default_queue().id)

    # ---------- Sync ----------

    def exclusion_rules(self) -> ExclusionRules:
        return ExclusionRules.from_settings(self.store.get_settings())

    def item_matches(
        self, item: VaultItem, criteria: SelectionCriteria, rules: ExclusionRules | None = None
    ) -> bool:
        rules = rules if rules is not None else self.exclusion_rules()
        return matches(item, self.vault.get_metadata(item), criteria, rules)

    def purge_unreachable_schedules(self) -> int:
        """Drop schedules that point at queues which no longer exist."""
        live = {q.id for q in self.store.get_queues()}
        purged = 0
        with self.store.transaction():
            for card in list(self.store.get_cards().values()):
                for queue_id in [q for q in card.schedules if q not in live]:
                    self.cards.remove_from_queue(card.item_path, queue_id)
                    purged += 1
        if purged:
            logger.info(f"[queues] Purged {purged} schedule(s) of deleted queues")
        return purged

    def sync_queue(self, queue_id: str) -> SyncResult:
        queue = self._require(queue_id)
        result = SyncResult()
        rules = self.exclusion_rules()

        with self.store.transaction():
            self.purge_unreachable_schedules()

            matching: set[str] = set()
            unreadable: set[str] = set()
            for item in self.vault.list_items():
                meta = self.vault.get_metadata(item)
                if matches(item, meta, queue.criteria, rules):
                    matching.add(item.path)
                elif meta is None:
                    unreadable.add(item.path)

            for card in self.cards.get_cards_for_queue(queue_id):
                path = card.item_path
                if path in matching:
                    continue
                if path in unreadable:
                    # Can't tell whether it still matches; keep its history.
                    logger.warning(f"[queues] Keeping {path} in '{queue.name}': unreadable")
                    result.unchanged += 1
                    continue
                if not self.vault.exists(path):
                    if self.orphans is not None:
                        self.orphans.orphan_card(path)
                    else:
                        self.cards.delete_card(path)
                else:
                    self.cards.remove_from_queue(path, queue_id)
                result.removed.append(path)

            for path in sorted(matching):
                if self.cards.ensure_schedule(path, queue_id):
                    result.added.append(path)
                else:
                    result.unchanged += 1

            self.get_queue_stats(queue_id)

        result.removed.sort()
        if result.changed:
            logger.info(
                f"[queues] Synced '{queue.name}': +{len(result.added)} -{len(result.removed)} "
                f"={result.unchanged}"
            )
        else:
            logger.debug(f"[queues] Synced '{queue.name}': no changes")
        return result

    def sync_all(self) -> dict[str, SyncResult]:
        return {q.id: self.sync_queue(q.id) for q in self.store.get_queues()}

    # ---------- Stats ----------

    def reviews_today(self, queue_id: str, now: datetime | None = None) -> list[ReviewLog]:
        """Non-undone ratings logged in this queue since the start of the local day."""
        today = start_of_day(now or self.clock())
        return [
            r
            for r in self.store.get_reviews()
            if r.queue_id == queue_id and not r.undone and r.review >= today
        ]

    def get_queue_stats(self, queue_id: str) -> QueueStats:
        """Live counts. Also refreshes the queue's cached stats."""
        self._require(queue_id)
        now = self.clock()
        due_cutoff = end_of_day(now)
        today = start_of_day(now)

        schedules = [c.schedules[queue_id] for c in self.cards.get_cards_for_queue(queue_id)]
        stats = QueueStats(
            total_notes=len(schedules),
            new_notes=sum(1 for s in schedules if s.is_new),
            due_notes=sum(1 for s in schedules if s.due <= due_cutoff),
            overdue_notes=sum(1 for s in schedules if s.due < today),
            reviewed_today=len(self.reviews_today(queue_id, now)),
            last_updated=now,
        )
        self.store.set_queue_stats(queue_id, stats)
        return stats

    def get_cached_stats(self, queue_id: str) -> QueueStats:
        queue = self._require(queue_id)
        age = self.clock() - queue.stats.last_updated
        if age < timedelta(seconds=STATS_CACHE_TTL_SECONDS):
            return queue.stats
        return self.get_queue_stats(queue_id)

    # ---------- Due notes ----------

    def daily_budget(self, queue_id: str) -> DailyBudget:
        settings = self.store.get_settings()
        today = self.reviews_today(queue_id)
        new_done = sum(1 for r in today if r.state == CardState.NEW)
        review_done = sum(1 for r in today if r.state == CardState.REVIEW)
        return DailyBudget(
            new_remaining=max(0, settings.new_cards_per_day - new_done),
            review_remaining=max(0, settings.max_reviews_per_day - review_done),
            total_remaining=max(0, settings.max_reviews_per_day - len(today)),
        )

    def get_due_notes(
        self, queue_id: str, order_strategy: QueueOrderStrategy | None = None
    ) -> list[Card]:
        self._require(queue_id)
        strategy = order_strategy or self.store.get_settings().queue_order
        now = self.clock()
        entries = [(c, c.schedules[queue_id]) for c in self.cards.get_due_cards(queue_id)]
        return order_entries(
            entries,
            QueueOrderStrategy(strategy),
            self.daily_budget(queue_id),
            lambda s: self.cards.scheduler.retrievability(s, now),
            self.rng,
        )

    def get_due_count(self, queue_id: str) -> int:
        return len(self.cards.get_due_cards(queue_id))
