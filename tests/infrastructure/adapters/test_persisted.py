"""Tests for the persisted record adapter and legacy SM-2 migration."""

from datetime import datetime, timedelta, timezone

import pytest

from memora.domain.cards.models import CardState, Grade, ReviewLog, create_new
from memora.domain.errors import DeserializationError
from memora.infrastructure.adapters.persisted import (
    PersistedCard,
    from_persisted,
    legacy_difficulty,
    load_card,
    log_from_record,
    log_to_record,
    migrate_legacy,
    migrate_record,
    to_persisted,
    to_record,
)


@pytest.fixture
def record(make_card):
    return to_record(make_card(key="verb_1", lapse_count=2))


# --- Current format ---


def test_to_record_shape(record):
    assert record == {
        "key": "verb_1",
        "stability": 10.0,
        "difficulty": 5.0,
        "state": "Review",
        "dueAt": "2024-03-01T09:00:00Z",
        "lastReviewedAt": "2024-02-01T09:00:00Z",
        "reviewCount": 3,
        "lapseCount": 2,
        "formatVersion": 2,
        "learningStep": 0,
    }


@pytest.mark.parametrize("grades", [(), ("good",), ("good", "good"), ("good",) * 3 + ("again",)])
def test_round_trip(scheduler, now, grades):
    card = create_new("k")
    for grade in grades:
        card = scheduler.schedule(card, grade, card.due_at or now)

    assert from_persisted(to_persisted(card)) == card
    assert from_persisted(to_record(card)) == card


def test_missing_field(record):
    del record["reviewCount"]
    with pytest.raises(DeserializationError) as excinfo:
        from_persisted(record)
    assert excinfo.value.field == "reviewCount"


def test_unknown_state(record):
    record["state"] = "Mastered"
    with pytest.raises(DeserializationError) as excinfo:
        from_persisted(record)
    assert excinfo.value.field == "state"
    assert excinfo.value.value == "Mastered"


def test_wrong_format_version(record):
    record["formatVersion"] = 1
    with pytest.raises(DeserializationError) as excinfo:
        from_persisted(record)
    assert excinfo.value.field == "formatVersion"


def test_domain_violation_reported_as_deserialization(record):
    record["stability"] = 0
    with pytest.raises(DeserializationError) as excinfo:
        from_persisted(record)
    assert excinfo.value.field == "stability"
    assert excinfo.value.value == 0


def test_negative_count(record):
    record["lapseCount"] = -1
    with pytest.raises(DeserializationError) as excinfo:
        from_persisted(record)
    assert excinfo.value.field == "lapseCount"


def test_not_a_mapping():
    with pytest.raises(DeserializationError):
        from_persisted(["not", "a", "record"])


def test_naive_timestamps_read_as_utc(record):
    record["dueAt"] = "2024-03-01T09:00:00"
    card = from_persisted(record)
    assert card.due_at == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_learning_step_optional(record):
    del record["learningStep"]
    assert from_persisted(record).learning_step == 0


def test_snake_case_accepted(make_card):
    card = make_card()
    record = to_persisted(card).model_dump()
    assert from_persisted(record) == card
    assert isinstance(PersistedCard.model_validate(record), PersistedCard)


# --- Legacy migration ---


def test_legacy_difficulty():
    assert legacy_difficulty(2.5) == 5.0
    assert legacy_difficulty(1.3) == 10.0
    assert legacy_difficulty(2.9) == pytest.approx(3.0)
    assert legacy_difficulty(5.0) == 1.0


def test_migrate_never_reviewed():
    card = migrate_legacy({"id": "w1", "easeFactor": 2.5, "interval": 0, "repetitions": 0})
    assert card == create_new("w1")


def test_migrate_learning(now):
    card = migrate_legacy(
        {"key": "w2", "easeFactor": 2.3, "interval": 1, "repetitions": 2}, migrated_at=now
    )
    assert card.state is CardState.LEARNING
    assert card.stability == 1.0
    assert card.difficulty == pytest.approx(6.0)
    assert card.due_at == now
    assert card.last_reviewed_at == now - timedelta(days=1)
    assert card.review_count == 2


def test_migrate_review():
    card = migrate_legacy(
        {
            "id": "w3",
            "easeFactor": 2.5,
            "interval": 20,
            "repetitions": 6,
            "lapses": 1,
            "nextReviewDate": "2024-04-01T00:00:00Z",
            "lastReviewDate": "2024-03-12T00:00:00Z",
            "formatVersion": 1,
        }
    )
    assert card.state is CardState.REVIEW
    assert card.stability == pytest.approx(18.0)
    assert card.difficulty == 5.0
    assert card.due_at == datetime(2024, 4, 1, tzinfo=timezone.utc)
    assert card.last_reviewed_at == datetime(2024, 3, 12, tzinfo=timezone.utc)
    assert card.lapse_count == 1


def test_migrate_last_review_never_after_due():
    card = migrate_legacy(
        {
            "id": "w4",
            "interval": 3,
            "repetitions": 4,
            "nextReviewDate": "2024-04-01T00:00:00Z",
            "lastReviewDate": "2024-04-05T00:00:00Z",
        }
    )
    assert card.last_reviewed_at == card.due_at


def test_migrate_defaults_due_to_now():
    before = datetime.now(timezone.utc)
    card = migrate_legacy({"id": "w5", "interval": 4, "repetitions": 3})
    assert card.due_at >= before


def test_migrate_current_record_is_noop(record):
    assert migrate_legacy(record) == from_persisted(record)


def test_migrate_state_is_noop(make_card):
    card = make_card()
    assert migrate_legacy(card) is card
    assert migrate_legacy(to_persisted(card)) == card


@pytest.mark.parametrize(
    "legacy",
    [
        {"id": "a", "easeFactor": 2.1, "interval": 7, "repetitions": 5},
        {"id": "b", "interval": 0, "repetitions": 0},
        {"id": "c", "interval": 2, "repetitions": 1, "nextReviewDate": "2024-01-02T00:00:00Z"},
    ],
)
def test_migrate_record_idempotent(legacy, now):
    once = migrate_record(legacy, migrated_at=now)
    assert once["formatVersion"] == 2
    assert migrate_record(once) == once


def test_migrate_legacy_missing_repetitions():
    with pytest.raises(DeserializationError) as excinfo:
        migrate_legacy({"id": "z", "interval": 3})
    assert excinfo.value.field == "repetitions"


@pytest.mark.parametrize("interval", [1e7, float("inf"), "inf", float("nan")])
def test_migrate_rejects_unbounded_interval(interval):
    with pytest.raises(DeserializationError) as excinfo:
        migrate_legacy(
            {
                "id": "x",
                "easeFactor": 2.5,
                "interval": interval,
                "repetitions": 5,
                "nextReviewDate": "2024-04-01T00:00:00Z",
            }
        )
    assert excinfo.value.field == "interval"


def test_migrate_interval_before_year_one():
    with pytest.raises(DeserializationError) as excinfo:
        migrate_legacy(
            {
                "id": "x",
                "interval": 100,
                "repetitions": 5,
                "nextReviewDate": "0001-01-10T00:00:00Z",
            }
        )
    assert excinfo.value.field == "interval"
    assert excinfo.value.value == 100


def test_migrate_unknown_version():
    with pytest.raises(DeserializationError) as excinfo:
        migrate_legacy({"id": "z", "interval": 3, "repetitions": 1, "formatVersion": 9})
    assert excinfo.value.field == "formatVersion"
    assert excinfo.value.value == 9


def test_load_card_dispatches(record, now):
    assert load_card(record) == from_persisted(record)
    legacy = load_card({"id": "l", "interval": 2, "repetitions": 1}, migrated_at=now)
    assert legacy.state is CardState.LEARNING


# --- Review history ---


def test_review_log_round_trip(now):
    log = ReviewLog(
        key="a",
        grade=Grade.HARD,
        reviewed_at=now,
        state_before=CardState.LEARNING,
        state_after=CardState.LEARNING,
        stability_before=2.4,
        stability_after=0.6,
        difficulty_before=4.93,
        difficulty_after=5.79,
        elapsed_days=0.01,
        scheduled_days=0.004,
        time_spent_ms=3100,
    )
    record = log_to_record(log)
    assert record["grade"] == 2
    assert record["stateBefore"] == "Learning"
    assert record["timeSpentMs"] == 3100
    assert log_from_record(record) == log


def test_review_log_bad_grade(now):
    with pytest.raises(DeserializationError) as excinfo:
        log_from_record({"key": "a", "grade": 7, "reviewedAt": now.isoformat()})
    assert excinfo.value.field == "grade"
