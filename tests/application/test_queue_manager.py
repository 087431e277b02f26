"""Tests for QueueManager: CRUD, sync, stats and due ordering."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from conftest import write_note
from mnemo.application.ordering import DailyBudget, order_entries
from mnemo.domain.constants import DEFAULT_QUEUE_ID
from mnemo.domain.errors import ConflictError, NotFoundError
from mnemo.domain.models import (
    Card,
    CardState,
    FolderCriteria,
    OrphanStatus,
    QueueOrderStrategy,
    Rating,
    Schedule,
    TagCriteria,
)

ROOT = FolderCriteria(folders=[""])


@pytest.fixture
def queues(services):
    return services.queues


# ---------- CRUD ----------


class TestQueueCrud:
    def test_create_and_find(self, queues):
        q = queues.create_queue("  Reading  ", ROOT)
        assert q.name == "Reading"
        assert queues.find_queue(q.id) == q
        assert queues.find_queue("reading") == q
        assert queues.find_queue("nope") is None

    def test_empty_name_rejected(self, queues):
        with pytest.raises(ValueError):
            queues.create_queue("   ", ROOT)

    def test_duplicate_name_conflicts(self, queues):
        queues.create_queue("Reading", ROOT)
        with pytest.raises(ConflictError):
            queues.create_queue("reading", ROOT)

    def test_rename(self, queues):
        a = queues.create_queue("A", ROOT)
        queues.create_queue("B", ROOT)
        assert queues.rename_queue(a.id, "A2").name == "A2"
        with pytest.raises(ConflictError):
            queues.rename_queue(a.id, "b")
        with pytest.raises(NotFoundError):
            queues.rename_queue("missing", "X")

    def test_default_queue_follows_settings(self, services, queues):
        services.store.update_settings(selection_mode="tag", tracked_tags=["python"])
        result = queues.sync_default_queue()
        assert queues.get_queue(DEFAULT_QUEUE_ID).name == "Default"
        assert result.added == ["beta.md"]

        services.store.update_settings(selection_mode="folder", tracked_folders=[""])
        result = queues.sync_default_queue()
        assert result.added == ["alpha.md", "gamma.md"]
        assert len(queues.get_all_queues()) == 1


# ---------- Sync ----------


class TestSync:
    def test_root_folder_adds_everything(self, flat_services):
        queues = flat_services.queues
        q = queues.create_queue("All", ROOT)

        result = queues.sync_queue(q.id)
        assert result.added == ["one.md", "three.md", "two.md"]
        assert result.removed == []
        for card in flat_services.cards.get_cards_for_queue(q.id):
            assert card.schedules[q.id].state == CardState.NEW

    def test_sync_is_idempotent(self, services, queues):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        again = queues.sync_queue(q.id)
        assert again.added == []
        assert again.removed == []
        assert again.unchanged == 3
        assert not again.changed

    def test_tag_queue(self, queues):
        q = queues.create_queue("Drafts", TagCriteria(tags=["#draft"]))
        assert queues.sync_queue(q.id).added == ["gamma.md"]

    def test_exclusions_win(self, services, queues):
        services.store.update_settings(excluded_tags=["draft"], excluded_note_names=["alpha"])
        q = queues.create_queue("All", ROOT)
        assert queues.sync_queue(q.id).added == ["beta.md"]

    def test_criteria_change_removes_schedules(self, services, queues):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)

        result = queues.update_criteria(q.id, TagCriteria(tags=["python"]))
        assert result.removed == ["alpha.md", "gamma.md"]
        assert result.unchanged == 1
        assert services.cards.get_card("alpha.md") is None

    def test_missing_item_becomes_orphan(self, services, queues, mock_vault):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        # Removed behind the vault's back, so no delete event fires.
        (mock_vault / "alpha.md").unlink()

        result = queues.sync_queue(q.id)
        assert result.removed == ["alpha.md"]
        pending = services.orphans.get_pending_orphans()
        assert [o.original_path for o in pending] == ["alpha.md"]
        assert pending[0].status == OrphanStatus.PENDING

    def test_new_file_is_picked_up(self, queues, mock_vault):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        write_note(mock_vault, "notes/delta.md", "# Delta")
        assert queues.sync_queue(q.id).added == ["notes/delta.md"]

    def test_bad_encoding_keeps_reviewed_schedule(self, services, queues, mock_vault):
        q = queues.create_queue("Python", TagCriteria(tags=["python"]))
        queues.sync_queue(q.id)
        services.cards.update_card_schedule("beta.md", q.id, Rating.GOOD)
        (mock_vault / "beta.md").write_bytes(b"---\ntags: [python]\n---\nBeta \xff body\n")

        result = queues.sync_queue(q.id)
        assert result.removed == []
        assert result.unchanged == 1
        assert services.cards.get_schedule("beta.md", q.id).reps == 1

    def test_unreadable_item_is_left_alone(self, services, queues, monkeypatch):
        q = queues.create_queue("Python", TagCriteria(tags=["python"]))
        queues.sync_queue(q.id)
        services.cards.update_card_schedule("beta.md", q.id, Rating.GOOD)
        monkeypatch.setattr(services.vault, "get_metadata", lambda item: None)

        result = queues.sync_queue(q.id)
        assert result.removed == []
        assert result.unchanged == 1
        assert services.cards.get_schedule("beta.md", q.id).reps == 1

    def test_delete_queue_purges_lazily(self, services, queues):
        keep = queues.create_queue("Keep", TagCriteria(tags=["python"]))
        gone = queues.create_queue("Gone", ROOT)
        queues.sync_queue(keep.id)
        queues.sync_queue(gone.id)

        queues.delete_queue(gone.id)
        assert services.cards.get_card("alpha.md") is not None

        queues.sync_queue(keep.id)
        assert services.cards.get_card("alpha.md") is None
        assert set(services.cards.get_card("beta.md").schedules) == {keep.id}

    def test_delete_queue_with_data(self, services, queues):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        queues.delete_queue(q.id, remove_schedule_data=True)
        assert services.store.get_cards() == {}
        with pytest.raises(NotFoundError):
            queues.delete_queue(q.id)


# ---------- Stats ----------


class TestStats:
    def test_live_counts(self, services, queues):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        services.cards.update_card_schedule("alpha.md", q.id, Rating.GOOD)

        stats = queues.get_queue_stats(q.id)
        assert stats.total_notes == 3
        assert stats.new_notes == 2
        assert stats.reviewed_today == 1
        assert stats.overdue_notes == 0

    def test_overdue(self, services, queues, clock):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        clock.advance(days=2)
        stats = queues.get_queue_stats(q.id)
        assert stats.due_notes == 3
        assert stats.overdue_notes == 3

    def test_cached_stats_expire(self, services, queues, clock):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        services.cards.update_card_schedule("alpha.md", q.id, Rating.GOOD)

        assert queues.get_cached_stats(q.id).reviewed_today == 0
        clock.advance(seconds=31)
        assert queues.get_cached_stats(q.id).reviewed_today == 1


# ---------- Due notes ----------


class TestDueNotes:
    def test_new_card_limit(self, services, queues):
        services.store.update_settings(new_cards_per_day=2)
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)

        due = queues.get_due_notes(q.id)
        assert [c.item_path for c in due] == ["alpha.md", "beta.md"]
        assert queues.get_due_count(q.id) == 3

    def test_limit_counts_todays_reviews(self, services, queues):
        services.store.update_settings(new_cards_per_day=2)
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        services.cards.update_card_schedule("alpha.md", q.id, Rating.EASY)

        assert queues.daily_budget(q.id).new_remaining == 1
        assert [c.item_path for c in queues.get_due_notes(q.id)] == ["beta.md"]

    def test_explicit_strategy(self, queues):
        q = queues.create_queue("All", ROOT)
        queues.sync_queue(q.id)
        due = queues.get_due_notes(q.id, QueueOrderStrategy.DUE_CHRONOLOGICAL)
        assert [c.item_path for c in due] == ["alpha.md", "beta.md", "gamma.md"]

    def test_unknown_queue(self, queues):
        with pytest.raises(NotFoundError):
            queues.get_due_notes("missing")


# ---------- Ordering strategies ----------

T0 = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)


def _entry(path, state, due_offset_h, difficulty=5.0, stability=1.0):
    schedule = Schedule(
        due=T0 + timedelta(hours=due_offset_h),
        state=state,
        difficulty=difficulty,
        stability=stability,
    )
    return Card(item_path=path, item_id=path, schedules={"q": schedule}), schedule


@pytest.fixture
def entries():
    return [
        _entry("e.md", CardState.REVIEW, -48, difficulty=2, stability=20),
        _entry("d.md", CardState.NEW, -1, difficulty=0, stability=0),
        _entry("c.md", CardState.LEARNING, -2, difficulty=7, stability=0.5),
        _entry("b.md", CardState.NEW, -1, difficulty=0, stability=0),
        _entry("a.md", CardState.RELEARNING, -5, difficulty=9, stability=2),
    ]


BIG = DailyBudget(new_remaining=100, review_remaining=100, total_remaining=100)


def _order(entries, strategy, budget=BIG, rng=None):
    cards = order_entries(
        entries, strategy, budget, lambda s: s.stability / 100, rng or random.Random(0)
    )
    return [c.item_path for c in cards]


class TestOrdering:
    def test_mixed_anki(self, entries):
        assert _order(entries, QueueOrderStrategy.MIXED_ANKI) == [
            "a.md",
            "c.md",
            "b.md",
            "d.md",
            "e.md",
        ]

    def test_mixed_anki_respects_budget(self, entries):
        budget = DailyBudget(new_remaining=1, review_remaining=0, total_remaining=5)
        assert _order(entries, QueueOrderStrategy.MIXED_ANKI, budget) == ["a.md", "c.md", "b.md"]

    @pytest.mark.parametrize(
        "strategy", [QueueOrderStrategy.DUE_OVERDUE_FIRST, QueueOrderStrategy.DUE_CHRONOLOGICAL]
    )
    def test_by_due(self, entries, strategy):
        assert _order(entries, strategy) == ["e.md", "a.md", "c.md", "b.md", "d.md"]

    def test_state_priority(self, entries):
        assert _order(entries, QueueOrderStrategy.STATE_PRIORITY) == [
            "c.md",
            "a.md",
            "e.md",
            "b.md",
            "d.md",
        ]

    def test_retrievability_ascending(self, entries):
        assert _order(entries, QueueOrderStrategy.RETRIEVABILITY_ASC) == [
            "b.md",
            "d.md",
            "c.md",
            "a.md",
            "e.md",
        ]

    def test_load_balancing_caps_total(self, entries):
        budget = DailyBudget(new_remaining=100, review_remaining=100, total_remaining=2)
        assert _order(entries, QueueOrderStrategy.LOAD_BALANCING, budget) == ["e.md", "a.md"]

    def test_difficulty(self, entries):
        assert _order(entries, QueueOrderStrategy.DIFFICULTY_DESC)[:2] == ["a.md", "c.md"]
        assert _order(entries, QueueOrderStrategy.DIFFICULTY_ASC)[:3] == ["b.md", "d.md", "e.md"]

    def test_random_is_seeded_permutation(self, entries):
        first = _order(entries, QueueOrderStrategy.RANDOM, rng=random.Random(3))
        second = _order(entries, QueueOrderStrategy.RANDOM, rng=random.Random(3))
        assert first == second
        assert sorted(first) == ["a.md", "b.md", "c.md", "d.md", "e.md"]
