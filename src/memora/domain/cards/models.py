"""
Domain models for card memory state.

These are pure data structures with no I/O or external dependencies.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum

from memora.domain.constants import (
    DEFAULT_NEW_DIFFICULTY,
    DEFAULT_NEW_STABILITY,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    SECONDS_PER_DAY,
)
from memora.domain.errors import ValidationError


class Grade(IntEnum):
    """Recall quality reported by the learner, ordered worse to better."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @classmethod
    def parse(cls, value: "str | int | Grade") -> "Grade":
        """Accept a Grade, its number (1-4) or its name ("good", "Easy")."""
        if isinstance(value, Grade):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError(
                    f"Grade must be between 1 and 4, got {value}", field="grade", value=value
                ) from None
        text = str(value).strip()
        if text.isdecimal():
            return cls.parse(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValidationError(
                f"Unknown grade {value!r} (expected again, hard, good or easy)",
                field="grade",
                value=value,
            ) from None


class CardState(str, Enum):
    """Lifecycle tag of a card."""

    NEW = "New"
    LEARNING = "Learning"
    REVIEW = "Review"
    RELEARNING = "Relearning"


def _check_aware(name: str, value: datetime | None) -> None:
    if value is None:
        return
    if not isinstance(value, datetime):
        raise ValidationError(f"{name} must be a datetime", field=name, value=value)
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{name} must be timezone-aware", field=name, value=value)


@dataclass(frozen=True)
class CardMemoryState:
    """
    Memory state of a single learnable item.

    Attributes:
        key: Stable identifier of the learnable unit. Never changes.
        state: Lifecycle tag (New, Learning, Review, Relearning).
        stability: Days until recall probability decays to 90%.
        difficulty: Intrinsic hardness on a 1-10 scale.
        due_at: Next scheduled review; None while the card is New.
        last_reviewed_at: Most recent graded review, None if never reviewed.
        review_count: Total graded reviews.
        lapse_count: Failed recalls while in Review state.
        learning_step: Position in the learning steps (Learning state only).
        elapsed_days: Days since the previous review, measured at the last
            review. Derived; ignored by equality and not persisted.
    """

    key: str
    state: CardState
    stability: float
    difficulty: float
    due_at: datetime | None = None
    last_reviewed_at: datetime | None = None
    review_count: int = 0
    lapse_count: int = 0
    learning_step: int = 0
    elapsed_days: float = field(default=0.0, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key:
            raise ValidationError("key must be a non-empty string", field="key", value=self.key)

        if not isinstance(self.state, CardState):
            raise ValidationError(
                f"state must be a CardState, got {self.state!r}", field="state", value=self.state
            )

        for name in ("stability", "difficulty"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number", field=name, value=value)

        if not math.isfinite(self.stability) or self.stability <= 0:
            raise ValidationError(
                f"stability must be a positive number, got {self.stability}",
                field="stability",
                value=self.stability,
            )

        if not MIN_DIFFICULTY <= self.difficulty <= MAX_DIFFICULTY:
            raise ValidationError(
                f"difficulty must be within [{MIN_DIFFICULTY}, {MAX_DIFFICULTY}], "
                f"got {self.difficulty}",
                field="difficulty",
                value=self.difficulty,
            )

        for name in ("review_count", "lapse_count", "learning_step"):
            count = getattr(self, name)
            if isinstance(count, bool) or not isinstance(count, int):
                raise ValidationError(f"{name} must be an integer", field=name, value=count)
            if count < 0:
                raise ValidationError(f"{name} must be >= 0, got {count}", field=name, value=count)

        _check_aware("due_at", self.due_at)
        _check_aware("last_reviewed_at", self.last_reviewed_at)

        if self.state is CardState.NEW and self.due_at is not None:
            raise ValidationError("a New card has no due date", field="due_at", value=self.due_at)
        if self.state is not CardState.NEW and self.due_at is None:
            raise ValidationError(
                f"a {self.state.value} card needs a due date", field="due_at", value=None
            )

        if (
            self.due_at is not None
            and self.last_reviewed_at is not None
            and self.due_at < self.last_reviewed_at
        ):
            raise ValidationError(
                "due_at precedes last_reviewed_at", field="due_at", value=self.due_at
            )

    @property
    def is_new(self) -> bool:
        return self.state is CardState.NEW

    @property
    def scheduled_days(self) -> float:
        """Length of the current interval in days (0.0 when not scheduled)."""
        if self.due_at is None or self.last_reviewed_at is None:
            return 0.0
        return (self.due_at - self.last_reviewed_at).total_seconds() / SECONDS_PER_DAY


def create_new(key: str) -> CardMemoryState:
    """Register a learnable unit: New state, default stability/difficulty, no due date."""
    return CardMemoryState(
        key=key,
        state=CardState.NEW,
        stability=DEFAULT_NEW_STABILITY,
        difficulty=DEFAULT_NEW_DIFFICULTY,
    )


@dataclass(frozen=True)
class ReviewLog:
    """
    A single graded review.

    Attributes:
        key: The card that was reviewed.
        grade: Button pressed.
        reviewed_at: When the grade was submitted.
        state_before / state_after: Lifecycle tag around the review.
        stability_before / stability_after: Stability around the review.
        difficulty_before / difficulty_after: Difficulty around the review.
        elapsed_days: Days since the previous review.
        scheduled_days: Interval assigned by this review (fractional for steps).
        time_spent_ms: Answer time reported by the caller.
    """

    key: str
    grade: Grade
    reviewed_at: datetime
    state_before: CardState
    state_after: CardState
    stability_before: float
    stability_after: float
    difficulty_before: float
    difficulty_after: float
    elapsed_days: float
    scheduled_days: float
    time_spent_ms: int = 0
