"""
Ports (interfaces) for the scheduling core's collaborators.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .collection import Collection


class CollectionRepository(ABC):
    """
    Port for loading and saving the card collection.

    Implementations:
        - JsonCollectionRepository: Stores the collection in a JSON document.
    """

    @abstractmethod
    def load(self) -> Collection:
        """
        Load the whole collection.

        Returns:
            A Collection; empty if nothing has been stored yet.
        """
        pass

    @abstractmethod
    def save(self, collection: Collection) -> None:
        """
        Persist the whole collection, including its review history.
        """
        pass


class Clock(Protocol):
    """Source of the current timestamp."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant. Call advance() to move it."""

    def __init__(self, instant: datetime):
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, **delta: float) -> datetime:
        self._instant = self._instant + timedelta(**delta)
        return self._instant
