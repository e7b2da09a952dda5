"""
Collection: the single owner of every CardMemoryState.

States are immutable; updating a card swaps in a new object for its key, so
a reader holding the previous state never sees a half-applied review. Writes
to one key are expected to be serialized by the caller (last write wins).
"""

from collections.abc import Iterable, Iterator, Mapping

from memora.domain.errors import UnknownCardError, ValidationError

from .models import CardMemoryState, ReviewLog


class Collection(Mapping[str, CardMemoryState]):
    """Insertion-ordered mapping of card key to memory state, plus review history."""

    def __init__(
        self,
        cards: Iterable[CardMemoryState] = (),
        history: Iterable[ReviewLog] = (),
    ):
        self._cards: dict[str, CardMemoryState] = {}
        self.history: list[ReviewLog] = list(history)
        for card in cards:
            self.add(card)

    def __getitem__(self, key: str) -> CardMemoryState:
        try:
            return self._cards[key]
        except KeyError:
            raise UnknownCardError(
                f"No card registered under {key!r}", field="key", value=key
            ) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._cards)

    def __len__(self) -> int:
        return len(self._cards)

    def __contains__(self, key: object) -> bool:
        return key in self._cards

    def __repr__(self) -> str:
        return f"Collection({len(self)} cards, {len(self.history)} reviews)"

    def add(self, card: CardMemoryState) -> None:
        """Register a new card. Keys are unique."""
        if card.key in self._cards:
            raise ValidationError(f"Duplicate card key {card.key!r}", field="key", value=card.key)
        self._cards[card.key] = card

    def put(self, card: CardMemoryState) -> None:
        """Replace the state of an already registered card, keeping its position."""
        if card.key not in self._cards:
            raise UnknownCardError(
                f"No card registered under {card.key!r}", field="key", value=card.key
            )
        self._cards[card.key] = card

    def remove(self, key: str) -> CardMemoryState:
        """Explicitly delete a card. Its review history is kept."""
        card = self[key]
        del self._cards[key]
        return card

    def record(self, log: ReviewLog) -> None:
        self.history.append(log)

    def states(self) -> list[CardMemoryState]:
        return list(self._cards.values())
