"""
Collection Stats Service: application layer orchestrator.

Coordinates loading the collection from the repository and computing metrics.
"""

import logging
from datetime import datetime

from memora.domain.cards.models import CardState
from memora.domain.cards.ports import CollectionRepository
from memora.domain.constants import (
    WEAK_LAPSE_THRESHOLD,
    WEAK_RETRIEVABILITY_THRESHOLD,
    WEAK_STABILITY_THRESHOLD,
)

from .metrics_calculator import CardInsight, CollectionStats, MetricsCalculator

logger = logging.getLogger(__name__)


class CollectionStatsService:
    """
    Application service for collection statistics.

    Follows Dependency Inversion: depends on the CollectionRepository
    abstraction, not a concrete storage adapter.
    """

    def __init__(
        self,
        repository: CollectionRepository,
        calculator: MetricsCalculator | None = None,
    ):
        """
        Args:
            repository: The repository (port) for loading the collection.
            calculator: Optional custom calculator; uses default if not provided.
        """
        self._repo = repository
        self._calc = calculator or MetricsCalculator()

    def get_summary(self, now: datetime) -> CollectionStats:
        collection = self._repo.load()
        return self._calc.summarize(collection, now, collection.history)

    def get_insights(self, now: datetime) -> list[CardInsight]:
        collection = self._repo.load()
        return [self._calc.enrich(card, now) for card in collection.values()]

    def get_weak_cards(
        self,
        now: datetime,
        stability_threshold: float = WEAK_STABILITY_THRESHOLD,
        lapse_threshold: int = WEAK_LAPSE_THRESHOLD,
        retrievability_threshold: float = WEAK_RETRIEVABILITY_THRESHOLD,
    ) -> list[CardInsight]:
        """
        Identify reviewed cards that are "weak" based on configurable thresholds.

        A card is weak if:
        - stability < stability_threshold, OR
        - lapses >= lapse_threshold, OR
        - retrievability < retrievability_threshold

        New cards are never weak. Results are weakest (lowest retrievability) first.
        """
        weak = []

        for card in self.get_insights(now):
            if card.state is CardState.NEW:
                continue

            is_weak = False

            # Low stability
            if card.stability < stability_threshold:
                is_weak = True

            # Has lapses
            if card.lapse_count >= lapse_threshold:
                is_weak = True

            # Low retrievability
            if card.current_retrievability < retrievability_threshold:
                is_weak = True

            if is_weak:
                weak.append(card)

        weak.sort(key=lambda c: c.current_retrievability)
        logger.debug(f"[stats] {len(weak)} weak card(s)")
        return weak
