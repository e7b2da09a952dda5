"""
Review service: the entry point used by review, deck and import flows.

Owns nothing itself; it works on the Collection it is given and writes it
back through the repository after every change.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from ulid import ULID

from memora.application.queue_builder import QueueLimits, build_study_queue, retention_rate
from memora.application.scheduler import Scheduler, SchedulingOption
from memora.domain.cards.collection import Collection
from memora.domain.cards.models import CardMemoryState, Grade, create_new
from memora.domain.cards.ports import Clock, CollectionRepository, SystemClock
from memora.domain.constants import RETENTION_THRESHOLD

logger = logging.getLogger(__name__)


def generate_card_key() -> str:
    """Generate a stable card key using ULID."""
    return f"card_{ULID()}"


class ReviewService:
    """
    Grades reviews, registers cards and builds study queues for one collection.

    Writes to a given key must be serialized by the caller; two concurrent
    grades of the same card resolve as last-applied-wins.
    """

    def __init__(
        self,
        collection: Collection,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        repository: CollectionRepository | None = None,
        limits: QueueLimits | None = None,
        retention_threshold: float = RETENTION_THRESHOLD,
    ):
        """
        Args:
            collection: The card collection to operate on.
            scheduler: Scheduler to use; default parameters if not provided.
            clock: Time source for calls without an explicit timestamp.
            repository: Optional persistence; saved after every change.
            limits: Default study queue caps.
            retention_threshold: Retrievability that counts as retained.
        """
        self.collection = collection
        self.scheduler = scheduler or Scheduler()
        self.clock = clock or SystemClock()
        self.repository = repository
        self.limits = limits or QueueLimits()
        self.retention_threshold = retention_threshold

    def import_card(self, key: str | None = None) -> CardMemoryState:
        """
        Register a learnable unit as a New card.

        Importing a key that is already registered returns the existing state.
        """
        key = key or generate_card_key()
        if key in self.collection:
            logger.debug(f"[import] {key} already registered")
            return self.collection[key]

        card = create_new(key)
        self.collection.add(card)
        logger.info(f"Imported card {key}")
        self._save()
        return card

    def grade_review(
        self,
        key: str,
        grade: Grade | int | str,
        now: datetime | None = None,
        time_spent_ms: int = 0,
    ) -> CardMemoryState:
        """
        Apply a graded review to a registered card.

        Raises:
            UnknownCardError: key is not registered.
            TemporalOrderError: now precedes the card's last review. The
                collection and storage are left untouched.
        """
        current = self.collection[key]
        now = now or self.clock.now()
        updated, log = self.scheduler.review(current, grade, now, time_spent_ms)

        self.collection.put(updated)
        self.collection.record(log)
        self._save()
        return updated

    def get_study_queue(
        self, now: datetime | None = None, limits: QueueLimits | None = None
    ) -> list[str]:
        """Ordered keys to study: due cards first, then new cards."""
        queue = build_study_queue(self.collection, now or self.clock.now(), limits or self.limits)
        return queue.ordered

    def preview(self, key: str, now: datetime | None = None) -> dict[Grade, SchedulingOption]:
        """What each grade would do to the card, without applying any."""
        return self.scheduler.preview(self.collection[key], now or self.clock.now())

    def retention_rate(self, now: datetime | None = None) -> float:
        return retention_rate(self.collection, now or self.clock.now(), self.retention_threshold)

    def register(self, cards: Iterable[CardMemoryState]) -> list[CardMemoryState]:
        """
        Add already-built cards (e.g. migrated legacy records), skipping keys that
        are registered. Saves once.
        """
        added = []
        for card in cards:
            if card.key in self.collection:
                continue
            self.collection.add(card)
            added.append(card)
        if added:
            self._save()
        return added

    def remove_card(self, key: str) -> CardMemoryState:
        removed = self.collection.remove(key)
        logger.info(f"Removed card {key}")
        self._save()
        return removed

    def _save(self) -> None:
        if self.repository is not None:
            self.repository.save(self.collection)
