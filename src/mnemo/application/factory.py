"""
Service Factory
Wires the store, scheduler, vault and application services together.
"""

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from mnemo.application.card_manager import CardManager
from mnemo.application.config import AppConfig
from mnemo.application.orphans import OrphanDetector
from mnemo.application.queue_manager import QueueManager
from mnemo.application.session_manager import SessionManager
from mnemo.application.utils.dates import utcnow
from mnemo.application.watcher import ReconciliationWatcher
from mnemo.domain.models import FsrsParams
from mnemo.domain.ports import ItemCollection, SchedulingFunction
from mnemo.infrastructure.adapters.filesystem_vault import FileSystemVault
from mnemo.infrastructure.adapters.fsrs_scheduler import FsrsScheduler
from mnemo.infrastructure.adapters.json_backend import JsonFileBackend
from mnemo.infrastructure.store import DataStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: DataStore
    vault: ItemCollection
    scheduler: SchedulingFunction
    cards: CardManager
    orphans: OrphanDetector
    queues: QueueManager
    watcher: ReconciliationWatcher
    sessions: SessionManager

    def close(self) -> None:
        if self.sessions.is_active:
            self.sessions.end_session()
        self.watcher.detach()
        self.store.close()


def wire_services(
    store: DataStore,
    vault: ItemCollection,
    scheduler: SchedulingFunction,
    clock: Callable[[], datetime] = utcnow,
    rng: random.Random | None = None,
    sync_on_start: bool = True,
) -> Services:
    """Build the service graph over already-constructed adapters."""
    cards = CardManager(store, scheduler, clock=clock)
    orphans = OrphanDetector(store, vault, clock=clock)
    queues = QueueManager(store, cards, vault, orphans=orphans, clock=clock, rng=rng)
    watcher = ReconciliationWatcher(vault, cards, queues, orphans)
    sessions = SessionManager(cards, queues, vault, clock=clock, sync_on_start=sync_on_start)

    watcher.on_rename(sessions.handle_rename)
    watcher.attach()
    return Services(
        store=store,
        vault=vault,
        scheduler=scheduler,
        cards=cards,
        orphans=orphans,
        queues=queues,
        watcher=watcher,
        sessions=sessions,
    )


def build_services(config: AppConfig) -> Services:
    """
    Returns the full service graph for a vault on disk, with the document
    loaded and the scheduler configured from stored settings plus config.
    """
    assert config.vault_root is not None and config.data_file is not None

    backend = JsonFileBackend(config.data_file)
    store = DataStore(backend, debounce_ms=config.save_debounce_ms)
    store.initialize()

    params = store.get_settings().fsrs_params
    if config.fsrs_overrides:
        params = FsrsParams.model_validate({**params.model_dump(), **config.fsrs_overrides})
    scheduler = FsrsScheduler.from_params(params)

    vault = FileSystemVault(config.vault_root)
    logger.debug(f"[factory] Vault {config.vault_root}, data {config.data_file}")
    return wire_services(store, vault, scheduler)
