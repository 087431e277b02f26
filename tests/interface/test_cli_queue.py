"""Tests for the queue, orphans and config CLI commands against a real vault."""

import json

import pytest
from typer.testing import CliRunner

from conftest import write_note
from mnemo.application import config as config_module
from mnemo.consts import VERSION
from mnemo.interface.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_user_config(mock_home, monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_FILES", [])


@pytest.fixture
def invoke(mock_vault):
    def _invoke(*args, input=None):
        return runner.invoke(app, ["--vault", str(mock_vault), *args], input=input)

    return _invoke


# --- Basics ---


def test_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "queue" in result.stdout
    assert "review" in result.stdout


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert VERSION in result.stdout


def test_config_show(mock_vault):
    result = runner.invoke(app, ["--vault", str(mock_vault), "config", "show"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["vault_root"] == str(mock_vault.resolve())
    assert data["data_file"].endswith("data.json")


# --- Queues ---


def test_create_and_list(invoke, mock_vault):
    result = invoke("queue", "create", "Everything")
    assert result.exit_code == 0, result.output
    assert "with 3 notes" in result.stdout
    assert (mock_vault / ".mnemo" / "data.json").exists()

    result = invoke("queue", "list", "--json")
    rows = json.loads(result.stdout)
    assert rows[0]["name"] == "Everything"
    assert rows[0]["stats"]["totalNotes"] == 3
    assert rows[0]["stats"]["newNotes"] == 3


def test_read_only_commands_leave_data_untouched(invoke, mock_vault):
    assert invoke("queue", "create", "Everything").exit_code == 0
    data_file = mock_vault / ".mnemo" / "data.json"
    written = data_file.stat().st_mtime_ns

    for _ in range(6):
        assert invoke("queue", "list").exit_code == 0
        assert invoke("queue", "stats", "Everything").exit_code == 0
        assert invoke("orphans", "list").exit_code == 0

    assert data_file.stat().st_mtime_ns == written
    assert list((mock_vault / ".mnemo").glob("backups/backup-*.json")) == []


def test_create_tag_queue(invoke):
    result = invoke("queue", "create", "Py", "--tag", "python")
    assert result.exit_code == 0
    assert "with 1 notes" in result.stdout


def test_folder_and_tag_together_rejected(invoke):
    result = invoke("queue", "create", "Bad", "-f", "notes", "-t", "python")
    assert result.exit_code != 0


def test_duplicate_name_is_an_error(invoke):
    invoke("queue", "create", "Everything")
    result = invoke("queue", "create", "everything")
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_list_empty(invoke):
    result = invoke("queue", "list")
    assert result.exit_code == 0
    assert "No queues yet" in result.stdout


def test_sync_reports_changes(invoke, mock_vault):
    invoke("queue", "create", "Everything")
    write_note(mock_vault, "delta.md", "# Delta")
    (mock_vault / "alpha.md").unlink()

    result = invoke("queue", "sync")
    assert result.exit_code == 0
    assert "Everything: +1 -1 =2" in result.stdout
    assert "1 orphaned card(s)" in result.stdout


def test_stats_and_due(invoke):
    invoke("queue", "create", "Everything")

    result = invoke("queue", "stats", "Everything", "--json")
    assert json.loads(result.stdout)["dueNotes"] == 3

    result = invoke("queue", "due", "everything", "--limit", "2")
    lines = result.stdout.strip().splitlines()
    assert [line.split("\t")[0] for line in lines] == ["alpha.md", "beta.md"]
    assert "New" in lines[0]


def test_unknown_queue(invoke):
    result = invoke("queue", "stats", "nope")
    assert result.exit_code == 1
    assert "No queue with id or name 'nope'" in result.output


def test_delete_with_confirmation(invoke):
    invoke("queue", "create", "Everything")

    result = invoke("queue", "delete", "Everything", input="n\n")
    assert result.exit_code == 1

    result = invoke("queue", "delete", "Everything", "--force", "--remove-data")
    assert result.exit_code == 0
    assert "Deleted queue 'Everything'" in result.stdout
    assert "No queues yet" in invoke("queue", "list").stdout


# --- Orphans ---


def test_orphan_relink_flow(invoke, mock_vault):
    invoke("queue", "create", "Everything")
    (mock_vault / "gamma.md").rename(mock_vault / "gamma-old.md")
    # Hide the renamed copy from the sync so only the orphan points at it.
    (mock_vault / "gamma-old.md").rename(mock_vault / "gamma-old.txt")

    result = invoke("orphans", "list", "--detect")
    assert result.exit_code == 0
    orphan_id, original = result.stdout.strip().split("\t")[:2]
    assert original == "gamma.md"

    (mock_vault / "gamma-old.txt").rename(mock_vault / "gamma-new.md")
    result = invoke("orphans", "matches", orphan_id)
    assert "gamma-new.md" in result.stdout
    assert "Similar filename" in result.stdout

    result = invoke("orphans", "relink", orphan_id, "gamma-new.md")
    assert result.exit_code == 0
    assert "Relinked to gamma-new.md" in result.stdout

    result = invoke("orphans", "relink", orphan_id, "gamma-new.md")
    assert result.exit_code == 1

    result = invoke("orphans", "cleanup")
    assert "Cleaned up 1 resolved orphan(s)" in result.stdout
    assert "No pending orphans" in invoke("orphans", "list").stdout


def test_orphan_remove(invoke, mock_vault):
    invoke("queue", "create", "Everything")
    (mock_vault / "beta.md").unlink()
    orphan_id = invoke("orphans", "list", "--detect").stdout.split("\t")[0]

    result = invoke("orphans", "remove", orphan_id)
    assert result.exit_code == 0
    assert "Removed orphan beta.md" in result.stdout
