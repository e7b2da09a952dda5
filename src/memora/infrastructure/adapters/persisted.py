"""
Persisted card records: the single translation boundary between
CardMemoryState and stored data.

Two record formats coexist, told apart by `formatVersion`:
    1 (or absent): legacy SM-2 records (ease factor, interval, repetitions)
    2:             stability/difficulty records produced by to_persisted()

Legacy records are migrated one way; current records round-trip exactly.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from memora.domain.cards.models import CardMemoryState, CardState, Grade, ReviewLog, create_new
from memora.domain.constants import (
    CURRENT_FORMAT_VERSION,
    DEFAULT_NEW_DIFFICULTY,
    LEGACY_DEFAULT_EASE,
    LEGACY_DIFFICULTY_PER_EASE,
    LEGACY_FORMAT_VERSION,
    LEGACY_LEARNING_REPETITIONS,
    LEGACY_STABILITY_FACTOR,
    MAX_DIFFICULTY,
    MAX_STABILITY,
    MIN_DIFFICULTY,
)
from memora.domain.errors import DeserializationError, ValidationError

logger = logging.getLogger(__name__)


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="after")
    @classmethod
    def assume_utc(cls, v: Any) -> Any:
        # Naive timestamps in stored data are UTC.
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PersistedCard(_Record):
    """Stored shape of a card (formatVersion 2)."""

    key: str = Field(min_length=1)
    stability: float
    difficulty: float
    state: CardState
    due_at: datetime | None = None
    last_reviewed_at: datetime | None = None
    review_count: int = Field(ge=0)
    lapse_count: int = Field(ge=0)
    format_version: int
    learning_step: int = Field(default=0, ge=0)


class LegacyCard(_Record):
    """Stored shape of an SM-2 card (formatVersion 1 or untagged)."""

    key: str = Field(min_length=1, validation_alias=AliasChoices("key", "id"))
    ease_factor: float = Field(default=LEGACY_DEFAULT_EASE, gt=0)
    interval: float = Field(ge=0, le=MAX_STABILITY, allow_inf_nan=False)
    repetitions: int = Field(ge=0)
    next_review_date: datetime | None = None
    last_review_date: datetime | None = None
    lapses: int = Field(default=0, ge=0)
    format_version: int = LEGACY_FORMAT_VERSION


class PersistedReviewLog(_Record):
    """Stored shape of one review history entry."""

    key: str = Field(min_length=1)
    grade: Grade
    reviewed_at: datetime
    state_before: CardState
    state_after: CardState
    stability_before: float
    stability_after: float
    difficulty_before: float
    difficulty_after: float
    elapsed_days: float = Field(ge=0)
    scheduled_days: float = Field(ge=0)
    time_spent_ms: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _from_pydantic(exc: PydanticValidationError, kind: str) -> DeserializationError:
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first["loc"]) or None
    value = first.get("input")
    if first["type"] == "missing":
        message = f"{kind} record is missing required field {loc!r}"
        value = None
    else:
        message = f"{kind} record has invalid {loc!r}: {first['msg']}"
    return DeserializationError(message, field=loc, value=value)


def _from_domain(exc: ValidationError) -> DeserializationError:
    field = to_camel(exc.field) if exc.field else None
    return DeserializationError(
        f"Card record has invalid {field!r}: {exc}", field=field, value=exc.value
    )


def _require_mapping(record: Any) -> Mapping[str, Any]:
    if not isinstance(record, Mapping):
        raise DeserializationError(
            f"Expected a mapping, got {type(record).__name__}", field=None, value=record
        )
    return record


# ---------------------------------------------------------------------------
# Current format
# ---------------------------------------------------------------------------


def to_persisted(state: CardMemoryState) -> PersistedCard:
    """Build the stored record for a card."""
    return PersistedCard(
        key=state.key,
        stability=state.stability,
        difficulty=state.difficulty,
        state=state.state,
        due_at=state.due_at,
        last_reviewed_at=state.last_reviewed_at,
        review_count=state.review_count,
        lapse_count=state.lapse_count,
        format_version=CURRENT_FORMAT_VERSION,
        learning_step=state.learning_step,
    )


def to_record(state: CardMemoryState) -> dict[str, Any]:
    """JSON-ready dict (camelCase keys, ISO-8601 timestamps)."""
    return to_persisted(state).model_dump(mode="json", by_alias=True)


def from_persisted(record: PersistedCard | Mapping[str, Any]) -> CardMemoryState:
    """
    Rebuild a card from its stored record.

    Raises:
        DeserializationError: a required field is missing or invalid, the
            state tag is unknown, or the record is not in the current format.
    """
    if not isinstance(record, PersistedCard):
        try:
            record = PersistedCard.model_validate(_require_mapping(record))
        except PydanticValidationError as exc:
            raise _from_pydantic(exc, "Card") from exc

    if record.format_version != CURRENT_FORMAT_VERSION:
        raise DeserializationError(
            f"Unsupported formatVersion {record.format_version} for {record.key!r} "
            f"(expected {CURRENT_FORMAT_VERSION}; migrate legacy records first)",
            field="formatVersion",
            value=record.format_version,
        )

    try:
        return CardMemoryState(
            key=record.key,
            state=record.state,
            stability=record.stability,
            difficulty=record.difficulty,
            due_at=record.due_at,
            last_reviewed_at=record.last_reviewed_at,
            review_count=record.review_count,
            lapse_count=record.lapse_count,
            learning_step=record.learning_step,
        )
    except ValidationError as exc:
        raise _from_domain(exc) from exc


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------


def record_format_version(record: Mapping[str, Any]) -> int:
    version = record.get("formatVersion", record.get("format_version", LEGACY_FORMAT_VERSION))
    if isinstance(version, bool) or not isinstance(version, int):
        raise DeserializationError(
            f"formatVersion must be an integer, got {version!r}",
            field="formatVersion",
            value=version,
        )
    return version


def legacy_difficulty(ease_factor: float) -> float:
    """
    Map an SM-2 ease factor onto the 1-10 difficulty scale.

    The default ease (2.5) lands on the default difficulty of a new card; every
    0.2 of ease below it adds one point of difficulty.
    """
    raw = DEFAULT_NEW_DIFFICULTY + LEGACY_DIFFICULTY_PER_EASE * (LEGACY_DEFAULT_EASE - ease_factor)
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, raw))


def migrate_legacy(
    record: Mapping[str, Any] | PersistedCard | CardMemoryState,
    migrated_at: datetime | None = None,
) -> CardMemoryState:
    """
    Derive a card from a legacy SM-2 record.

    Heuristic (one-time, best effort):
        - repetitions == 0          -> New
        - repetitions < 3           -> Learning
        - otherwise                 -> Review
        - stability  = max(1, 0.9 * interval)
        - difficulty = legacy_difficulty(easeFactor)
        - due        = nextReviewDate, else migrated_at (due immediately)
        - last review = lastReviewDate, else due - interval

    Records already in the current format are decoded unchanged, so applying
    the migration twice is the same as applying it once.

    Args:
        record: Legacy or current record.
        migrated_at: Due date for legacy records without nextReviewDate.
            Defaults to the current UTC time.
    """
    if isinstance(record, CardMemoryState):
        return record
    if isinstance(record, PersistedCard):
        return from_persisted(record)

    record = _require_mapping(record)
    version = record_format_version(record)
    if version == CURRENT_FORMAT_VERSION:
        return from_persisted(record)
    if version != LEGACY_FORMAT_VERSION:
        raise DeserializationError(
            f"Unknown formatVersion {version}", field="formatVersion", value=version
        )

    try:
        legacy = LegacyCard.model_validate(record)
    except PydanticValidationError as exc:
        raise _from_pydantic(exc, "Legacy card") from exc

    if legacy.repetitions == 0:
        logger.debug(f"[migrate] {legacy.key}: never reviewed, registered as New")
        return create_new(legacy.key)

    state = (
        CardState.LEARNING
        if legacy.repetitions < LEGACY_LEARNING_REPETITIONS
        else CardState.REVIEW
    )
    due_at = legacy.next_review_date or migrated_at or datetime.now(timezone.utc)
    if due_at.tzinfo is None:
        due_at = due_at.replace(tzinfo=timezone.utc)
    try:
        last_reviewed_at = legacy.last_review_date or due_at - timedelta(days=legacy.interval)
    except OverflowError as exc:
        raise DeserializationError(
            f"Legacy card {legacy.key!r} has an interval reaching before year 1",
            field="interval",
            value=legacy.interval,
        ) from exc
    last_reviewed_at = min(last_reviewed_at, due_at)

    try:
        migrated = CardMemoryState(
            key=legacy.key,
            state=state,
            stability=max(1.0, legacy.interval * LEGACY_STABILITY_FACTOR),
            difficulty=legacy_difficulty(legacy.ease_factor),
            due_at=due_at,
            last_reviewed_at=last_reviewed_at,
            review_count=legacy.repetitions,
            lapse_count=legacy.lapses,
        )
    except ValidationError as exc:
        raise _from_domain(exc) from exc

    logger.debug(
        f"[migrate] {legacy.key}: ease={legacy.ease_factor} interval={legacy.interval} -> "
        f"{state.value} S={migrated.stability:.2f} D={migrated.difficulty:.2f}"
    )
    return migrated


def migrate_record(
    record: Mapping[str, Any], migrated_at: datetime | None = None
) -> dict[str, Any]:
    """Record-to-record migration; idempotent on its own output."""
    return to_record(migrate_legacy(record, migrated_at))


def load_card(record: Mapping[str, Any], migrated_at: datetime | None = None) -> CardMemoryState:
    """Decode any stored card, migrating legacy records on the way."""
    if record_format_version(_require_mapping(record)) == CURRENT_FORMAT_VERSION:
        return from_persisted(record)
    return migrate_legacy(record, migrated_at)


# ---------------------------------------------------------------------------
# Review history
# ---------------------------------------------------------------------------


def log_to_record(log: ReviewLog) -> dict[str, Any]:
    return PersistedReviewLog(
        key=log.key,
        grade=log.grade,
        reviewed_at=log.reviewed_at,
        state_before=log.state_before,
        state_after=log.state_after,
        stability_before=log.stability_before,
        stability_after=log.stability_after,
        difficulty_before=log.difficulty_before,
        difficulty_after=log.difficulty_after,
        elapsed_days=log.elapsed_days,
        scheduled_days=log.scheduled_days,
        time_spent_ms=log.time_spent_ms,
    ).model_dump(mode="json", by_alias=True)


def log_from_record(record: Mapping[str, Any]) -> ReviewLog:
    try:
        entry = PersistedReviewLog.model_validate(_require_mapping(record))
    except PydanticValidationError as exc:
        raise _from_pydantic(exc, "Review log") from exc
    return ReviewLog(
        key=entry.key,
        grade=entry.grade,
        reviewed_at=entry.reviewed_at,
        state_before=entry.state_before,
        state_after=entry.state_after,
        stability_before=entry.stability_before,
        stability_after=entry.stability_after,
        difficulty_before=entry.difficulty_before,
        difficulty_after=entry.difficulty_after,
        elapsed_days=entry.elapsed_days,
        scheduled_days=entry.scheduled_days,
        time_spent_ms=entry.time_spent_ms,
    )
