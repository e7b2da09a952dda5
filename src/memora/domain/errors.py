"""
Error taxonomy for the scheduling core.

Every error names the offending field and value so callers can report it
without parsing messages.
"""

from typing import Any


class MemoraError(Exception):
    """Base class for all errors raised by memora."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class ValidationError(MemoraError):
    """A CardMemoryState (or scheduler parameter) was built with an illegal value."""


class TemporalOrderError(MemoraError):
    """A review timestamp precedes the card's last recorded review."""


class DeserializationError(MemoraError):
    """A persisted record is missing a required field or holds an invalid value."""


class UnknownCardError(MemoraError, KeyError):
    """No card is registered under the requested key."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""
