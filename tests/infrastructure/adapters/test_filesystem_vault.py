"""Tests for the file-system item collection."""

import pytest

from conftest import write_note
from mnemo.domain.ports import VaultEventType
from mnemo.infrastructure.adapters.filesystem_vault import FileSystemVault


@pytest.fixture
def vault(mock_vault):
    write_note(mock_vault, "folder/deep/note.md", "---\nstatus: draft\n---\nbody #idea\n")
    write_note(mock_vault, ".obsidian/workspace.md", "ignored")
    write_note(mock_vault, "image.png", "not markdown")
    return FileSystemVault(mock_vault)


class TestQueries:
    def test_list_items_skips_dot_dirs_and_non_markdown(self, vault):
        paths = [i.path for i in vault.list_items()]
        assert paths == ["alpha.md", "beta.md", "folder/deep/note.md", "gamma.md"]

    def test_get_item(self, vault):
        item = vault.get_item("folder/deep/note.md")
        assert item.basename == "note"
        assert item.folder == "folder/deep"
        assert vault.get_item("missing.md") is None
        assert vault.exists("alpha.md")

    def test_metadata(self, vault):
        meta = vault.get_metadata(vault.get_item("folder/deep/note.md"))
        assert meta.frontmatter == {"status": "draft"}
        assert meta.inline_tags == ["#idea"]

    def test_bad_frontmatter_reads_as_empty(self, vault, mock_vault):
        write_note(mock_vault, "broken.md", "---\nkey: [oops\n---\ntext #tag\n")
        meta = vault.get_metadata(vault.get_item("broken.md"))
        assert meta.frontmatter == {}
        assert meta.inline_tags == ["#tag"]


class TestEvents:
    def test_write_helpers_emit(self, vault):
        events = []
        vault.subscribe(events.append)

        vault.create_item("new/one.md", "# one")
        vault.move_item("new/one.md", "moved.md")
        vault.delete_item("moved.md")

        assert [(e.type, e.path, e.old_path) for e in events] == [
            (VaultEventType.CREATE, "new/one.md", None),
            (VaultEventType.RENAME, "moved.md", "new/one.md"),
            (VaultEventType.DELETE, "moved.md", None),
        ]
        # Helpers keep the scan in step, so polling finds nothing new.
        assert vault.poll() == []

    def test_poll_detects_external_changes(self, vault, mock_vault):
        events = []
        vault.subscribe(events.append)

        (mock_vault / "alpha.md").rename(mock_vault / "alpha-renamed.md")
        (mock_vault / "beta.md").unlink()
        write_note(mock_vault, "fresh.md", "brand new content")

        polled = vault.poll()
        assert polled == events
        assert {(e.type, e.path, e.old_path) for e in polled} == {
            (VaultEventType.RENAME, "alpha-renamed.md", "alpha.md"),
            (VaultEventType.DELETE, "beta.md", None),
            (VaultEventType.CREATE, "fresh.md", None),
        }

    def test_unsubscribe(self, vault):
        events = []
        unsubscribe = vault.subscribe(events.append)
        unsubscribe()
        vault.create_item("x.md")
        assert events == []
