# Infrastructure Adapters Package
from .json_repository import JsonCollectionRepository
from .persisted import (
    LegacyCard,
    PersistedCard,
    from_persisted,
    migrate_legacy,
    migrate_record,
    to_persisted,
    to_record,
)

__all__ = [
    "JsonCollectionRepository",
    "PersistedCard",
    "LegacyCard",
    "to_persisted",
    "to_record",
    "from_persisted",
    "migrate_legacy",
    "migrate_record",
]
