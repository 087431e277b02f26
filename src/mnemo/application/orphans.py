"""
Orphan lifecycle: cards whose backing item vanished.

An orphan keeps a full snapshot of the Card so it can be relinked to a new
path later. Matches are suggestions only; nothing here relinks on its own.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from mnemo.application.utils.dates import days_between, utcnow
from mnemo.application.utils.ids import generate_id
from mnemo.domain.constants import MARKDOWN_SUFFIX, MAX_ORPHAN_MATCHES, MIN_MATCH_CONFIDENCE
from mnemo.domain.errors import ConflictError, NotFoundError
from mnemo.domain.models import Card, OrphanRecord, OrphanResolution, OrphanStatus
from mnemo.domain.ports import ItemCollection, VaultItem
from mnemo.infrastructure.store import DataStore

logger = logging.getLogger(__name__)


@dataclass
class OrphanMatch:
    item: VaultItem
    confidence: float
    reasons: list[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return ", ".join(self.reasons)


def _stem(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    return name[: -len(MARKDOWN_SUFFIX)] if name.lower().endswith(MARKDOWN_SUFFIX) else name


def _folder(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def score_candidate(orphan: OrphanRecord, item: VaultItem) -> OrphanMatch:
    score = 0.0
    reasons: list[str] = []

    original = _stem(orphan.original_path).lower()
    candidate = _stem(item.path).lower()
    if candidate == original:
        score += 0.5
        reasons.append("Same filename")
    elif original and original in candidate:
        score += 0.2
        reasons.append("Similar filename")
    elif candidate and candidate in original:
        score += 0.15
        reasons.append("Partial filename match")

    if _folder(item.path) == _folder(orphan.original_path):
        score += 0.2
        reasons.append("Same folder")

    created_gap = abs(days_between(orphan.card_data.created_at, item.ctime))
    if created_gap < 1:
        score += 0.3
        reasons.append("Created same day")
    elif created_gap < 7:
        score += 0.15
        reasons.append("Created within a week")

    if item.mtime >= orphan.detected_at:
        score += 0.1
        reasons.append("Modified recently")

    return OrphanMatch(item=item, confidence=min(1.0, score), reasons=reasons)


class OrphanDetector:
    def __init__(
        self,
        store: DataStore,
        vault: ItemCollection,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.vault = vault
        self.clock = clock

    def orphan_card(self, item_path: str) -> OrphanRecord | None:
        """Snapshot the Card at `item_path` into a pending orphan and delete it, atomically."""
        with self.store.transaction():
            card = self.store.get_card(item_path)
            if card is None:
                return None
            orphan = OrphanRecord(
                id=generate_id(),
                original_path=item_path,
                card_data=card.model_copy(deep=True),
                detected_at=self.clock(),
            )
            self.store.add_orphan(orphan)
            self.store.delete_card(item_path)

        logger.info(f"[orphans] {item_path} is gone; card kept as orphan {orphan.id}")
        return orphan

    def detect_orphans(self) -> list[OrphanRecord]:
        """Bulk scan: orphan every Card whose item no longer exists."""
        found: list[OrphanRecord] = []
        for path in sorted(self.store.get_cards()):
            if self.vault.exists(path):
                continue
            orphan = self.orphan_card(path)
            if orphan is not None:
                found.append(orphan)
        if found:
            logger.info(f"[orphans] Detected {len(found)} orphan(s)")
        return found

    def _require(self, orphan_id: str) -> OrphanRecord:
        orphan = self.store.get_orphan(orphan_id)
        if orphan is None:
            raise NotFoundError(f"Orphan not found: {orphan_id}")
        return orphan

    def find_potential_matches(
        self, orphan: OrphanRecord | str, limit: int = MAX_ORPHAN_MATCHES
    ) -> list[OrphanMatch]:
        if isinstance(orphan, str):
            orphan = self._require(orphan)

        claimed = set(self.store.get_cards())
        matches = []
        for item in self.vault.list_items():
            if item.path in claimed or not item.path.lower().endswith(MARKDOWN_SUFFIX):
                continue
            match = score_candidate(orphan, item)
            if match.confidence >= MIN_MATCH_CONFIDENCE and match.reasons:
                matches.append(match)

        matches.sort(key=lambda m: (-m.confidence, m.item.path))
        return matches[:limit]

    def relink_orphan(self, orphan_id: str, new_path: str) -> Card:
        with self.store.transaction():
            orphan = self._require(orphan_id)
            if orphan.status != OrphanStatus.PENDING:
                raise ConflictError(f"Orphan {orphan_id} is already {orphan.status.value}")
            if not self.vault.exists(new_path):
                raise NotFoundError(f"No item at {new_path}")
            if self.store.get_card(new_path) is not None:
                raise ConflictError(f"A card already exists at {new_path}")

            now = self.clock()
            card = orphan.card_data.model_copy(
                deep=True, update={"item_path": new_path, "last_modified": now}
            )
            self.store.set_card(card)
            moved = self.store.migrate_review_log_paths(orphan.original_path, new_path)

            orphan.status = OrphanStatus.RESOLVED
            orphan.resolution = OrphanResolution(
                action="relink", new_path=new_path, resolved_at=now
            )
            self.store.update_orphan(orphan)

        logger.info(
            f"[orphans] Relinked {orphan.original_path} -> {new_path} ({moved} review log(s) moved)"
        )
        return card

    def remove_orphan(self, orphan_id: str) -> OrphanRecord:
        """Give up on an orphan. Review history stays for statistics."""
        with self.store.transaction():
            orphan = self._require(orphan_id)
            if orphan.status != OrphanStatus.PENDING:
                raise ConflictError(f"Orphan {orphan_id} is already {orphan.status.value}")
            orphan.status = OrphanStatus.REMOVED
            orphan.resolution = OrphanResolution(action="remove", resolved_at=self.clock())
            self.store.update_orphan(orphan)

        logger.info(f"[orphans] Removed orphan {orphan.original_path}")
        return orphan

    def get_pending_orphans(self) -> list[OrphanRecord]:
        return self.store.get_pending_orphans()

    def get_orphan_count(self) -> int:
        return len(self.get_pending_orphans())

    def cleanup_resolved_orphans(self) -> int:
        return self.store.cleanup_resolved_orphans()
