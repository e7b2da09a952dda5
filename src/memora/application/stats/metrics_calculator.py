"""
Metrics calculator for deriving insights from card memory state.

This is a pure computation module with no I/O.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from memora.application.scheduler import card_retrievability, days_between, is_due
from memora.domain.cards.models import CardMemoryState, CardState, Grade, ReviewLog


@dataclass
class CardInsight:
    """
    One card's state enriched with computed metrics.
    """

    key: str
    state: CardState
    stability: float
    difficulty: float
    review_count: int
    lapse_count: int

    # Computed metrics
    current_retrievability: float
    lapse_rate: float | None  # lapses / reviews
    days_overdue: float | None  # Negative if not yet due


@dataclass
class CollectionStats:
    """Aggregate view of a collection at a point in time."""

    total: int = 0
    new: int = 0
    learning: int = 0
    review: int = 0
    relearning: int = 0
    due_now: int = 0

    # Averages over reviewed (non-New) cards
    average_stability: float = 0.0
    average_difficulty: float = 0.0
    estimated_retention: float = 0.0

    total_reviews: int = 0
    total_lapses: int = 0
    answer_accuracy: float | None = None  # Share of non-Again grades in history


class MetricsCalculator:
    """
    Computes derived metrics from card states and review history.

    Stateless and side-effect free.
    """

    def enrich(self, card: CardMemoryState, now: datetime) -> CardInsight:
        """
        Enrich a card's state with computed metrics.
        """
        return CardInsight(
            key=card.key,
            state=card.state,
            stability=card.stability,
            difficulty=card.difficulty,
            review_count=card.review_count,
            lapse_count=card.lapse_count,
            current_retrievability=card_retrievability(card, now),
            lapse_rate=self._compute_lapse_rate(card),
            days_overdue=self._compute_days_overdue(card, now),
        )

    def summarize(
        self,
        cards: Mapping[str, CardMemoryState],
        now: datetime,
        history: Iterable[ReviewLog] = (),
    ) -> CollectionStats:
        """
        Count cards per state and average the memory model over reviewed cards.
        """
        stats = CollectionStats(total=len(cards))

        total_stability = 0.0
        total_difficulty = 0.0
        total_retention = 0.0
        reviewed = 0

        for card in cards.values():
            if card.state is CardState.NEW:
                stats.new += 1
            elif card.state is CardState.LEARNING:
                stats.learning += 1
            elif card.state is CardState.REVIEW:
                stats.review += 1
            else:
                stats.relearning += 1

            if is_due(card, now):
                stats.due_now += 1

            stats.total_reviews += card.review_count
            stats.total_lapses += card.lapse_count

            if card.state is not CardState.NEW:
                total_stability += card.stability
                total_difficulty += card.difficulty
                total_retention += card_retrievability(card, now)
                reviewed += 1

        if reviewed:
            stats.average_stability = total_stability / reviewed
            stats.average_difficulty = total_difficulty / reviewed
            stats.estimated_retention = total_retention / reviewed

        stats.answer_accuracy = self._compute_accuracy(history)
        return stats

    def _compute_lapse_rate(self, card: CardMemoryState) -> float | None:
        """
        Compute lapse rate as lapses / total reviews.
        """
        if card.review_count == 0:
            return None
        return card.lapse_count / card.review_count

    def _compute_days_overdue(self, card: CardMemoryState, now: datetime) -> float | None:
        """
        Compute days overdue (negative if not yet due).
        """
        if card.due_at is None:
            return None
        return days_between(card.due_at, now)

    def _compute_accuracy(self, history: Iterable[ReviewLog]) -> float | None:
        total = 0
        correct = 0
        for log in history:
            total += 1
            if log.grade is not Grade.AGAIN:
                correct += 1
        if total == 0:
            return None
        return correct / total
