"""
Queue builder for study sessions.

Builds ordered study queues by:
1. Collecting due cards (oldest due first, harder cards first on ties)
2. Collecting new cards in registration order
3. Combining both under per-session caps

Every function is a pure query over a key -> CardMemoryState mapping.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from memora.application.scheduler import card_retrievability, is_due
from memora.domain.cards.models import CardMemoryState, CardState
from memora.domain.constants import (
    DEFAULT_MAX_NEW_PER_DAY,
    DEFAULT_MAX_REVIEW_PER_DAY,
    RETENTION_THRESHOLD,
)

logger = logging.getLogger(__name__)

Cards = Mapping[str, CardMemoryState]


@dataclass
class QueueLimits:
    """
    Caps for one study session.

    interleave_every: when set, one new card is slotted in after every
    N due cards instead of appending all new cards at the end.
    """

    max_due: int = DEFAULT_MAX_REVIEW_PER_DAY
    max_new: int = DEFAULT_MAX_NEW_PER_DAY
    interleave_every: int | None = None


@dataclass
class StudyQueue:
    """Result of queue building."""

    due: list[str] = field(default_factory=list)  # Capped due cards, in due order
    new: list[str] = field(default_factory=list)  # Capped new cards, in insertion order
    ordered: list[str] = field(default_factory=list)  # Final presentation order


def due_cards(collection: Cards, now: datetime) -> list[str]:
    """
    Keys of all non-New cards due at or before now.

    Ordered by ascending due date; among equally due cards the higher
    difficulty comes first, then registration order.
    """
    due = [
        (index, card)
        for index, card in enumerate(collection.values())
        if card.state is not CardState.NEW and is_due(card, now)
    ]
    due.sort(key=lambda item: (item[1].due_at, -item[1].difficulty, item[0]))
    return [card.key for _, card in due]


def new_cards(collection: Cards, limit: int | None = None) -> list[str]:
    """Keys of New cards in registration order, truncated to limit."""
    keys = [card.key for card in collection.values() if card.state is CardState.NEW]
    if limit is None:
        return keys
    return keys[: max(0, limit)]


def build_study_queue(
    collection: Cards,
    now: datetime,
    limits: QueueLimits | None = None,
) -> StudyQueue:
    """
    Build a session: due cards first (capped), then new cards (capped).

    Args:
        collection: Mapping of key to card state.
        now: Reference time for due checks.
        limits: Session caps; defaults to the daily limits.

    Returns:
        StudyQueue with both sub-queues and the final order.
    """
    limits = limits or QueueLimits()
    due = due_cards(collection, now)[: max(0, limits.max_due)]
    fresh = new_cards(collection, limits.max_new)

    if limits.interleave_every and limits.interleave_every > 0:
        ordered = _interleave(due, fresh, limits.interleave_every)
    else:
        ordered = due + fresh

    logger.debug(f"[queue] due={len(due)} new={len(fresh)} total={len(ordered)}")
    return StudyQueue(due=due, new=fresh, ordered=ordered)


def study_session(
    collection: Cards,
    now: datetime,
    max_due: int = DEFAULT_MAX_REVIEW_PER_DAY,
    max_new: int = DEFAULT_MAX_NEW_PER_DAY,
    interleave_every: int | None = None,
) -> list[str]:
    """Ordered keys for a study session; see build_study_queue."""
    limits = QueueLimits(max_due=max_due, max_new=max_new, interleave_every=interleave_every)
    return build_study_queue(collection, now, limits).ordered


def retention_rate(
    collection: Cards,
    now: datetime,
    threshold: float = RETENTION_THRESHOLD,
) -> float:
    """
    Share of Review-state cards whose retrievability at now is at or above threshold.

    Returns 1.0 when no card is in Review state.
    """
    reviewing = [card for card in collection.values() if card.state is CardState.REVIEW]
    if not reviewing:
        return 1.0
    retained = sum(1 for card in reviewing if card_retrievability(card, now) >= threshold)
    return retained / len(reviewing)


def sort_by_review_priority(collection: Cards, now: datetime) -> list[str]:
    """
    All keys by review urgency.

    Due cards first (lowest retrievability first), then cards not yet due
    (soonest first), then New cards in registration order.
    """
    due: list[tuple[float, int, str]] = []
    upcoming: list[tuple[datetime, int, str]] = []
    fresh: list[str] = []

    for index, card in enumerate(collection.values()):
        if card.state is CardState.NEW:
            fresh.append(card.key)
        elif is_due(card, now):
            due.append((card_retrievability(card, now), index, card.key))
        else:
            upcoming.append((card.due_at, index, card.key))

    due.sort()
    upcoming.sort()
    return [key for *_, key in due] + [key for *_, key in upcoming] + fresh


def _interleave(due: list[str], fresh: list[str], every: int) -> list[str]:
    """One new card after every `every` due cards; leftovers of either list go last."""
    session: list[str] = []
    due_idx = 0
    new_idx = 0

    while due_idx < len(due) or new_idx < len(fresh):
        chunk = due[due_idx : due_idx + every]
        session.extend(chunk)
        due_idx += len(chunk)
        if new_idx < len(fresh):
            session.append(fresh[new_idx])
            new_idx += 1

    return session
