"""
JSON Collection Repository: infrastructure adapter for a single JSON document.

Implements CollectionRepository. Document layout:

    {"formatVersion": 2, "cards": [...], "history": [...]}

Legacy card records found while loading are migrated on the fly; they are
written back in the current format on the next save.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from memora.domain.cards.collection import Collection
from memora.domain.cards.ports import CollectionRepository
from memora.domain.constants import CURRENT_FORMAT_VERSION
from memora.domain.errors import DeserializationError, ValidationError

from .persisted import (
    load_card,
    log_from_record,
    log_to_record,
    record_format_version,
    to_record,
)

logger = logging.getLogger(__name__)


class JsonCollectionRepository(CollectionRepository):
    """Loads and saves the whole collection as one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Collection:
        """
        Read the collection. A missing file is an empty collection.

        Raises:
            DeserializationError: the file is not valid JSON or a record is malformed.
        """
        if not self.path.exists():
            logger.info(f"No collection at {self.path}, starting empty")
            return Collection()

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise DeserializationError(
                f"{self.path} is not valid JSON: {e}", field=None, value=str(self.path)
            ) from e

        if isinstance(document, list):
            # Bare list of cards, as exported by older versions.
            document = {"cards": document}
        if not isinstance(document, dict):
            raise DeserializationError(
                f"{self.path} must hold an object or a list of cards",
                field=None,
                value=type(document).__name__,
            )

        cards = document.get("cards", [])
        if not isinstance(cards, list):
            raise DeserializationError("'cards' must be a list", field="cards", value=cards)

        migrated_at = datetime.now(timezone.utc)
        migrated = 0
        states = []
        for record in cards:
            states.append(load_card(record, migrated_at))
            if record_format_version(record) != CURRENT_FORMAT_VERSION:
                migrated += 1

        history = [log_from_record(entry) for entry in document.get("history", [])]

        if migrated:
            logger.info(f"Migrated {migrated} legacy card(s) from {self.path}")
        logger.debug(f"Loaded {len(states)} cards, {len(history)} reviews from {self.path}")
        try:
            return Collection(states, history)
        except ValidationError as e:
            raise DeserializationError(str(e), field="key", value=e.value) from e

    def save(self, collection: Collection) -> None:
        document = {
            "formatVersion": CURRENT_FORMAT_VERSION,
            "cards": [to_record(card) for card in collection.values()],
            "history": [log_to_record(log) for log in collection.history],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a sibling file first so a crash never leaves half a document.
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.path)
        logger.debug(f"Saved {len(collection)} cards to {self.path}")
