# Domain Cards Package
from .collection import Collection
from .models import CardMemoryState, CardState, Grade, ReviewLog, create_new
from .ports import Clock, CollectionRepository, FixedClock, SystemClock

__all__ = [
    "CardMemoryState",
    "CardState",
    "Grade",
    "ReviewLog",
    "create_new",
    "Collection",
    "CollectionRepository",
    "Clock",
    "SystemClock",
    "FixedClock",
]
