"""
Review order strategies for due cards.

Every strategy starts from a list sorted by item path, and Python's sort is
stable, so equal keys always come out in path order.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass

from mnemo.domain.models import Card, CardState, QueueOrderStrategy, Schedule

Entry = tuple[Card, Schedule]

# Learning > Relearning > Review > New
STATE_PRIORITY = {
    CardState.LEARNING: 1,
    CardState.RELEARNING: 2,
    CardState.REVIEW: 3,
    CardState.NEW: 4,
}


@dataclass(frozen=True)
class DailyBudget:
    """How many more new and review cards may be shown today."""

    new_remaining: int
    review_remaining: int
    total_remaining: int


def _by_due(entry: Entry):
    return entry[1].due


def order_entries(
    entries: list[Entry],
    strategy: QueueOrderStrategy,
    budget: DailyBudget,
    retrievability: Callable[[Schedule], float],
    rng: random.Random,
) -> list[Card]:
    ordered = sorted(entries, key=lambda e: e[0].item_path)

    match strategy:
        case QueueOrderStrategy.MIXED_ANKI:
            learning = [
                e for e in ordered if e[1].state in (CardState.LEARNING, CardState.RELEARNING)
            ]
            new = [e for e in ordered if e[1].state == CardState.NEW]
            review = [e for e in ordered if e[1].state == CardState.REVIEW]
            learning.sort(key=_by_due)
            new.sort(key=_by_due)
            review.sort(key=_by_due)
            ordered = (
                learning
                + new[: max(0, budget.new_remaining)]
                + review[: max(0, budget.review_remaining)]
            )
        case QueueOrderStrategy.DUE_OVERDUE_FIRST | QueueOrderStrategy.DUE_CHRONOLOGICAL:
            # Ascending due puts the most overdue first; both names share the order.
            ordered.sort(key=_by_due)
        case QueueOrderStrategy.STATE_PRIORITY:
            ordered.sort(key=lambda e: (STATE_PRIORITY.get(e[1].state, 5), e[1].due))
        case QueueOrderStrategy.RETRIEVABILITY_ASC:
            ordered.sort(key=lambda e: retrievability(e[1]))
        case QueueOrderStrategy.LOAD_BALANCING:
            ordered.sort(key=_by_due)
            ordered = ordered[: max(0, budget.total_remaining)]
        case QueueOrderStrategy.DIFFICULTY_DESC:
            ordered.sort(key=lambda e: e[1].difficulty, reverse=True)
        case QueueOrderStrategy.DIFFICULTY_ASC:
            ordered.sort(key=lambda e: e[1].difficulty)
        case QueueOrderStrategy.RANDOM:
            rng.shuffle(ordered)
        case _:
            raise ValueError(f"Unknown order strategy: {strategy}")

    return [card for card, _ in ordered]
