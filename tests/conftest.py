import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from mnemo.application.factory import Services, wire_services
from mnemo.domain.ports import StorageBackend
from mnemo.infrastructure.adapters.filesystem_vault import FileSystemVault
from mnemo.infrastructure.adapters.fsrs_scheduler import FsrsScheduler
from mnemo.infrastructure.store import DataStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryBackend(StorageBackend):
    """Storage backend that keeps everything in a dict. `fail_saves` makes the next N saves fail."""

    def __init__(self, document: dict[str, Any] | None = None):
        self.document = document
        self.saves: list[dict[str, Any]] = []
        self.backups: list[tuple[str, Any, str]] = []
        self.fail_saves = 0

    def load(self) -> dict[str, Any] | None:
        return self.document

    def save(self, document: dict[str, Any]) -> None:
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise OSError("disk full")
        self.document = document
        self.saves.append(document)

    def backup(self, document: Any, reason: str = "") -> str | None:
        backup_id = f"backup-{len(self.backups)}"
        self.backups.insert(0, (backup_id, document, reason))
        return backup_id

    def list_backups(self) -> list[str]:
        return [b[0] for b in self.backups]


def write_note(root: Path, rel: str, text: str = "") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_vault(tmp_path):
    """A vault with three notes at the root and a few in folders."""
    d = tmp_path / "MyVault"
    d.mkdir()
    write_note(d, "alpha.md", "# Alpha\n")
    write_note(d, "beta.md", "---\ntags: [python]\n---\nBeta body\n")
    write_note(d, "gamma.md", "Gamma with an inline #draft tag\n")
    return d


@pytest.fixture
def flat_vault(tmp_path):
    """Exactly three notes, all at the vault root."""
    d = tmp_path / "FlatVault"
    d.mkdir()
    for name in ("one", "two", "three"):
        write_note(d, f"{name}.md", f"# {name}\n")
    return d


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def store(backend):
    s = DataStore(backend, autosave=False)
    s.initialize()
    return s


@pytest.fixture
def scheduler():
    return FsrsScheduler()


def make_services(vault_root: Path, store: DataStore, clock: FakeClock) -> Services:
    return wire_services(
        store,
        FileSystemVault(vault_root),
        FsrsScheduler(),
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def services(mock_vault, store, clock):
    return make_services(mock_vault, store, clock)


@pytest.fixture
def flat_services(flat_vault, store, clock):
    return make_services(flat_vault, store, clock)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    return home
