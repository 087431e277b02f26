"""Tests for CardManager: the Card/Schedule invariant, rating and rollback."""

from datetime import timedelta

import pytest

from mnemo.application.card_manager import CardManager
from mnemo.domain.errors import ConflictError, NotFoundError
from mnemo.domain.models import CardState, Rating


@pytest.fixture
def cards(store, scheduler, clock):
    return CardManager(store, scheduler, clock=clock)


class TestCreate:
    def test_create_new_schedule(self, cards, clock):
        card = cards.create_card("a.md", "q1")
        schedule = card.schedules["q1"]
        assert schedule.state == CardState.NEW
        assert schedule.reps == 0 and schedule.lapses == 0
        assert schedule.stability == 0
        assert schedule.due == clock.now
        assert card.item_id

    def test_duplicate_pair_conflicts(self, cards):
        cards.create_card("a.md", "q1")
        with pytest.raises(ConflictError):
            cards.create_card("a.md", "q1")

    def test_second_queue_shares_card(self, cards):
        first = cards.create_card("a.md", "q1")
        second = cards.create_card("a.md", "q2")
        assert second.item_id == first.item_id
        assert set(second.schedules) == {"q1", "q2"}

    def test_ensure_schedule_is_idempotent(self, cards):
        assert cards.ensure_schedule("a.md", "q1") is True
        assert cards.ensure_schedule("a.md", "q1") is False


class TestRemoval:
    def test_last_schedule_removes_card(self, cards):
        cards.create_card("a.md", "q1")
        cards.create_card("a.md", "q2")

        assert cards.remove_from_queue("a.md", "q1")
        assert cards.has_card("a.md")
        assert cards.remove_from_queue("a.md", "q2")
        assert not cards.has_card("a.md")

    def test_remove_unknown_pair(self, cards):
        assert cards.remove_from_queue("missing.md", "q1") is False

    def test_delete_card_drops_every_queue(self, cards):
        cards.create_card("a.md", "q1")
        cards.create_card("a.md", "q2")
        cards.delete_card("a.md")
        assert cards.get_card("a.md") is None


class TestRename:
    def test_rename_keeps_identity_and_history(self, cards, store):
        card = cards.create_card("a.md", "q1")
        log = cards.update_card_schedule("a.md", "q1", Rating.GOOD)

        renamed = cards.rename_card("a.md", "b.md")
        assert renamed.item_id == card.item_id
        assert cards.get_card("a.md") is None
        assert store.get_review(log.id).card_path == "b.md"

    def test_rename_missing_is_noop(self, cards):
        assert cards.rename_card("missing.md", "b.md") is None
        assert cards.get_card("b.md") is None

    def test_rename_onto_existing_conflicts(self, cards):
        cards.create_card("a.md", "q1")
        cards.create_card("b.md", "q1")
        with pytest.raises(ConflictError):
            cards.rename_card("a.md", "b.md")
        assert cards.has_card("a.md")


class TestRating:
    def test_update_appends_log(self, cards, store, clock):
        cards.create_card("a.md", "q1")
        log = cards.update_card_schedule("a.md", "q1", Rating.GOOD, session_id="s1")

        assert log.undone is False
        assert log.session_id == "s1"
        assert log.state == CardState.NEW
        assert store.get_reviews() == [log]

        schedule = cards.get_schedule("a.md", "q1")
        assert schedule.reps == 1
        assert schedule.due > clock.now

    def test_update_without_schedule(self, cards):
        with pytest.raises(NotFoundError):
            cards.update_card_schedule("a.md", "q1", Rating.GOOD)

    def test_rollback_restores_schedule(self, cards, store):
        cards.create_card("a.md", "q1")
        before = cards.get_schedule("a.md", "q1").model_copy(deep=True)
        log = cards.update_card_schedule("a.md", "q1", Rating.EASY)

        restored = cards.rollback("a.md", "q1", log)
        assert restored == before
        assert cards.get_schedule("a.md", "q1") == before
        assert store.get_review(log.id).undone

    def test_rollback_only_latest(self, cards, store, clock):
        cards.create_card("a.md", "q1")
        first = cards.update_card_schedule("a.md", "q1", Rating.GOOD)
        clock.advance(days=3)
        cards.update_card_schedule("a.md", "q1", Rating.GOOD)
        current = cards.get_schedule("a.md", "q1")

        with pytest.raises(ConflictError):
            cards.rollback("a.md", "q1", first)
        assert cards.get_schedule("a.md", "q1") == current
        assert not store.get_review(first.id).undone

    def test_rollback_twice_conflicts(self, cards):
        cards.create_card("a.md", "q1")
        log = cards.update_card_schedule("a.md", "q1", Rating.HARD)
        cards.rollback("a.md", "q1", log)
        with pytest.raises(ConflictError):
            cards.rollback("a.md", "q1", log)

    def test_sequential_rollbacks_unwind(self, cards, clock):
        cards.create_card("a.md", "q1")
        original = cards.get_schedule("a.md", "q1").model_copy(deep=True)
        logs = []
        for rating in (Rating.GOOD, Rating.AGAIN, Rating.EASY):
            logs.append(cards.update_card_schedule("a.md", "q1", rating))
            clock.advance(days=2)

        for log in reversed(logs):
            cards.rollback("a.md", "q1", log)
        assert cards.get_schedule("a.md", "q1") == original


class TestQueries:
    def test_due_overdue_and_new(self, cards, store, clock):
        cards.create_card("new.md", "q1")
        cards.create_card("old.md", "q1")
        cards.create_card("later.md", "q1")

        card = store.get_card("old.md")
        card.schedules["q1"].due = clock.now - timedelta(days=3)
        card = store.get_card("later.md")
        card.schedules["q1"].due = clock.now + timedelta(days=3)

        assert {c.item_path for c in cards.get_due_cards("q1")} == {"new.md", "old.md"}
        assert [c.item_path for c in cards.get_overdue_cards("q1")] == ["old.md"]
        assert len(cards.get_new_cards("q1")) == 3

    def test_preview_and_retrievability(self, cards):
        cards.create_card("a.md", "q1")
        assert cards.get_retrievability("a.md", "q1") == 0.0
        assert cards.get_retrievability("a.md", "other") is None
        assert set(cards.get_scheduling_preview("a.md", "q1")) == set(Rating)
