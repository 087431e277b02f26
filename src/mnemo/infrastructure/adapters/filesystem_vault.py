"""
Item collection over a directory of Markdown files.

Paths are vault-relative POSIX strings. Events reach listeners either through
the write helpers (create_item / move_item / delete_item), which act on disk
and emit immediately, or through poll(), which diffs the tree against the
last scan.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from mnemo.application.utils.fs import iter_markdown_files, to_vault_path
from mnemo.application.utils.text import extract_inline_tags, parse_frontmatter
from mnemo.domain.ports import (
    ItemCollection,
    ItemMetadata,
    VaultEvent,
    VaultEventType,
    VaultItem,
    VaultListener,
)

# (size, mtime_ns): enough to pair a vanished path with a new one as a rename.
Signature = tuple[int, int]


class FileSystemVault(ItemCollection):
    def __init__(self, root: Path):
        self.root = Path(root)
        self.logger = logging.getLogger(__name__)
        self._listeners: list[VaultListener] = []
        self._known: dict[str, Signature] | None = None

    # ---------- Queries ----------

    def _to_item(self, path: Path) -> VaultItem | None:
        try:
            st = path.stat()
        except OSError as e:
            self.logger.debug(f"[vault] stat failed for {path}: {e}")
            return None
        return VaultItem(
            path=to_vault_path(self.root, path),
            ctime=datetime.fromtimestamp(st.st_ctime, timezone.utc),
            mtime=datetime.fromtimestamp(st.st_mtime, timezone.utc),
        )

    def list_items(self) -> Iterable[VaultItem]:
        for p in iter_markdown_files(self.root):
            item = self._to_item(p)
            if item is not None:
                yield item

    def get_item(self, path: str) -> VaultItem | None:
        full = self.root / path
        if not full.is_file():
            return None
        return self._to_item(full)

    def get_metadata(self, item: VaultItem) -> ItemMetadata | None:
        try:
            text = (self.root / item.path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            self.logger.warning(f"[vault] Could not read {item.path}: {e}")
            return None

        meta, body = parse_frontmatter(text)
        if "__yaml_error__" in meta:
            self.logger.debug(f"[vault] Bad frontmatter in {item.path}: {meta['__yaml_error__']}")
            meta = {}
        return ItemMetadata(frontmatter=meta, inline_tags=extract_inline_tags(body))

    # ---------- Events ----------

    def subscribe(self, listener: VaultListener) -> Callable[[], None]:
        self._listeners.append(listener)
        if self._known is None:
            self._known = self._scan()

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: VaultEvent) -> None:
        self.logger.debug(f"[vault] {event.type.value}: {event.old_path or ''} {event.path}")
        for listener in list(self._listeners):
            listener(event)

    def _scan(self) -> dict[str, Signature]:
        known: dict[str, Signature] = {}
        for p in iter_markdown_files(self.root):
            try:
                st = p.stat()
            except OSError:
                continue
            known[to_vault_path(self.root, p)] = (st.st_size, st.st_mtime_ns)
        return known

    def poll(self) -> list[VaultEvent]:
        """Diff the tree against the last scan and emit what changed."""
        current = self._scan()
        if self._known is None:
            self._known = current
            return []

        removed = {p: sig for p, sig in self._known.items() if p not in current}
        added = {p: sig for p, sig in current.items() if p not in self._known}
        self._known = current

        events: list[VaultEvent] = []
        for old_path, sig in sorted(removed.items()):
            match = next((p for p, s in sorted(added.items()) if s == sig), None)
            if match is not None:
                del added[match]
                events.append(VaultEvent(VaultEventType.RENAME, match, old_path))
            else:
                events.append(VaultEvent(VaultEventType.DELETE, old_path))
        for path in sorted(added):
            events.append(VaultEvent(VaultEventType.CREATE, path))

        for event in events:
            self.emit(event)
        return events

    # ---------- Write helpers ----------

    def _remember(self, path: str) -> None:
        if self._known is None:
            return
        st = (self.root / path).stat()
        self._known[path] = (st.st_size, st.st_mtime_ns)

    def _forget(self, path: str) -> None:
        if self._known is not None:
            self._known.pop(path, None)

    def create_item(self, path: str, text: str = "") -> VaultItem | None:
        full = self.root / path
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(text, encoding="utf-8")
        self._remember(path)
        self.emit(VaultEvent(VaultEventType.CREATE, path))
        return self._to_item(full)

    def move_item(self, old_path: str, new_path: str) -> None:
        target = self.root / new_path
        target.parent.mkdir(parents=True, exist_ok=True)
        (self.root / old_path).rename(target)
        self._forget(old_path)
        self._remember(new_path)
        self.emit(VaultEvent(VaultEventType.RENAME, new_path, old_path))

    def delete_item(self, path: str) -> None:
        (self.root / path).unlink()
        self._forget(path)
        self.emit(VaultEvent(VaultEventType.DELETE, path))
