"""
JSON file storage backend.

Writes go to a temp file that is swapped into place with os.replace, so a
crash mid-write never leaves a truncated document. Before overwriting, the
previous file is copied into `backups/` (at most once per backup interval),
and only the newest MAX_BACKUPS snapshots are kept.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from mnemo.application.utils.ids import generate_id
from mnemo.domain.constants import MAX_BACKUPS
from mnemo.domain.errors import CorruptedDocumentError
from mnemo.domain.ports import StorageBackend

logger = logging.getLogger(__name__)

BACKUP_INTERVAL_SECONDS = 3600.0


class JsonFileBackend(StorageBackend):
    def __init__(
        self,
        path: Path,
        backup_dir: Path | None = None,
        max_backups: int = MAX_BACKUPS,
        backup_interval: float = BACKUP_INTERVAL_SECONDS,
    ):
        self.path = Path(path)
        self.backup_dir = backup_dir or self.path.parent / "backups"
        self.max_backups = max_backups
        self.backup_interval = backup_interval

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            logger.info(f"[json] No document at {self.path}, first run")
            return None

        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            quarantined = self._quarantine()
            raise CorruptedDocumentError(
                f"{self.path} is not valid JSON ({e}); moved to {quarantined.name}"
            ) from e

    def save(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists() and self._backup_due():
            self.backup(self.path.read_text(encoding="utf-8"), reason="pre-write")

        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def backup(self, document: Any, reason: str = "") -> str | None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        backup_id = generate_id()
        suffix = f"-{reason}" if reason else ""
        target = self.backup_dir / f"backup-{backup_id}{suffix}.json"

        if isinstance(document, str):
            target.write_text(document, encoding="utf-8")
        else:
            target.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")

        logger.info(f"[json] Backup written: {target.name}")
        self._rotate()
        return backup_id

    def list_backups(self) -> list[str]:
        if not self.backup_dir.exists():
            return []
        # ULIDs sort by creation time.
        ids = [p.stem.split("-")[1] for p in self.backup_dir.glob("backup-*.json")]
        return sorted(ids, reverse=True)

    def _backup_due(self) -> bool:
        """Judged from the newest snapshot on disk, so it holds across processes."""
        if not self.backup_dir.exists():
            return True
        mtimes = [p.stat().st_mtime for p in self.backup_dir.glob("backup-*.json")]
        if not mtimes:
            return True
        return time.time() - max(mtimes) >= self.backup_interval

    def _rotate(self) -> None:
        files = sorted(self.backup_dir.glob("backup-*.json"), reverse=True)
        for stale in files[self.max_backups :]:
            stale.unlink(missing_ok=True)
            logger.debug(f"[json] Pruned backup {stale.name}")

    def _quarantine(self) -> Path:
        target = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
        os.replace(self.path, target)
        logger.warning(f"[json] Quarantined unreadable document as {target.name}")
        return target
