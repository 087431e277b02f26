"""
Reconciliation Watcher: keeps cards in step with vault events.

    create -> add a schedule in every queue the item matches
    rename -> move the card; membership is re-checked on the next sync
    delete -> snapshot the card into an orphan, then drop it

Every handler is idempotent, so replaying an event or racing a full sync
leaves the same state.
"""

import logging
from collections.abc import Callable

from mnemo.application.card_manager import CardManager
from mnemo.application.orphans import OrphanDetector
from mnemo.application.queue_manager import QueueManager
from mnemo.domain.constants import MARKDOWN_SUFFIX
from mnemo.domain.errors import ConflictError
from mnemo.domain.models import OrphanRecord
from mnemo.domain.ports import ItemCollection, VaultEvent, VaultEventType

logger = logging.getLogger(__name__)

RenameListener = Callable[[str, str], None]


def _is_markdown(path: str | None) -> bool:
    return bool(path) and path.lower().endswith(MARKDOWN_SUFFIX)


class ReconciliationWatcher:
    def __init__(
        self,
        vault: ItemCollection,
        cards: CardManager,
        queues: QueueManager,
        orphans: OrphanDetector,
    ):
        self.vault = vault
        self.cards = cards
        self.queues = queues
        self.orphans = orphans
        self._rename_listeners: list[RenameListener] = []
        self._unsubscribe: Callable[[], None] | None = None

    # ---------- Wiring ----------

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.vault.subscribe(self.handle_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_rename(self, listener: RenameListener) -> Callable[[], None]:
        self._rename_listeners.append(listener)
        return lambda: self._rename_listeners.remove(listener)

    def handle_event(self, event: VaultEvent) -> None:
        match event.type:
            case VaultEventType.CREATE:
                self.handle_create(event.path)
            case VaultEventType.RENAME:
                self.handle_rename(event.old_path or "", event.path)
            case VaultEventType.DELETE:
                self.handle_delete(event.path)

    # ---------- Handlers ----------

    def handle_create(self, path: str) -> list[str]:
        """Returns the ids of queues the item was added to."""
        if not _is_markdown(path):
            return []
        item = self.vault.get_item(path)
        if item is None:
            logger.debug(f"[watcher] Created item vanished before handling: {path}")
            return []

        rules = self.queues.exclusion_rules()
        added = []
        for queue in self.queues.get_all_queues():
            if self.queues.item_matches(item, queue.criteria, rules):
                if self.cards.ensure_schedule(path, queue.id):
                    added.append(queue.id)
        if added:
            logger.info(f"[watcher] {path} joined {len(added)} queue(s)")
        return added

    def handle_rename(self, old_path: str, new_path: str) -> bool:
        if not (_is_markdown(old_path) and _is_markdown(new_path)):
            return False
        if not self.cards.has_card(old_path):
            return False
        try:
            self.cards.rename_card(old_path, new_path)
        except ConflictError as e:
            logger.warning(f"[watcher] Rename not applied: {e}")
            return False

        for listener in list(self._rename_listeners):
            listener(old_path, new_path)
        return True

    def handle_delete(self, path: str) -> OrphanRecord | None:
        if not _is_markdown(path):
            return None
        return self.orphans.orphan_card(path)
