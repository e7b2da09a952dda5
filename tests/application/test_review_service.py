"""Tests for ReviewService: grading, import, queues and persistence hand-off."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from memora.application.queue_builder import QueueLimits
from memora.application.review_service import ReviewService, generate_card_key
from memora.domain.cards.collection import Collection
from memora.domain.cards.models import CardState, Grade, create_new
from memora.domain.cards.ports import CollectionRepository, FixedClock
from memora.domain.errors import TemporalOrderError, UnknownCardError


@pytest.fixture
def clock(now):
    return FixedClock(now)


@pytest.fixture
def repo():
    return MagicMock(spec=CollectionRepository)


@pytest.fixture
def service(clock, repo):
    return ReviewService(Collection(), clock=clock, repository=repo)


def test_generate_card_key():
    key = generate_card_key()
    assert key.startswith("card_")
    assert len(key) == len("card_") + 26
    assert generate_card_key() != key


def test_import_card(service, repo):
    card = service.import_card("kanji_1")
    assert card.state is CardState.NEW
    assert service.collection["kanji_1"] is card
    repo.save.assert_called_once_with(service.collection)


def test_import_card_generates_key(service):
    card = service.import_card()
    assert card.key.startswith("card_")
    assert card.key in service.collection


def test_import_existing_key_returns_existing_state(service, repo, now):
    service.import_card("a")
    graded = service.grade_review("a", Grade.GOOD)
    repo.save.reset_mock()

    again = service.import_card("a")
    assert again is graded
    assert again.state is CardState.LEARNING
    repo.save.assert_not_called()


def test_grade_review_updates_collection_and_history(service, repo, clock, now):
    service.import_card("a")
    repo.save.reset_mock()

    card = service.grade_review("a", "good", time_spent_ms=1500)
    assert card.state is CardState.LEARNING
    assert card.last_reviewed_at == now
    assert service.collection["a"] is card
    assert len(service.collection.history) == 1
    assert service.collection.history[0].time_spent_ms == 1500
    repo.save.assert_called_once()

    clock.advance(minutes=1)
    card = service.grade_review("a", Grade.GOOD)
    assert card.last_reviewed_at == now + timedelta(minutes=1)


def test_grade_unknown_card(service, repo):
    with pytest.raises(UnknownCardError):
        service.grade_review("ghost", Grade.GOOD)
    repo.save.assert_not_called()


def test_temporal_error_leaves_no_side_effect(service, repo, now):
    service.import_card("a")
    before = service.grade_review("a", Grade.GOOD, now=now)
    repo.save.reset_mock()

    with pytest.raises(TemporalOrderError):
        service.grade_review("a", Grade.GOOD, now=now - timedelta(hours=1))

    assert service.collection["a"] is before
    assert len(service.collection.history) == 1
    repo.save.assert_not_called()


def test_study_queue(service, clock):
    for key in ("a", "b", "c"):
        service.import_card(key)
    service.grade_review("a", Grade.GOOD)

    assert service.get_study_queue() == ["b", "c"]
    clock.advance(minutes=2)
    assert service.get_study_queue() == ["a", "b", "c"]
    assert service.get_study_queue(limits=QueueLimits(max_due=0, max_new=1)) == ["b"]


def test_preview_does_not_apply(service):
    service.import_card("a")
    options = service.preview("a")
    assert set(options) == set(Grade)
    assert service.collection["a"].state is CardState.NEW


def test_retention_rate_without_review_cards(service):
    service.import_card("a")
    assert service.retention_rate() == 1.0


def test_register_skips_existing(service, repo, make_card):
    service.import_card("a")
    repo.save.reset_mock()

    added = service.register([create_new("a"), make_card("b"), make_card("c")])
    assert [card.key for card in added] == ["b", "c"]
    assert list(service.collection) == ["a", "b", "c"]
    repo.save.assert_called_once()


def test_remove_card(service, repo):
    service.import_card("a")
    service.remove_card("a")
    assert "a" not in service.collection
    with pytest.raises(UnknownCardError):
        service.remove_card("a")


def test_works_without_repository(now):
    service = ReviewService(Collection(), clock=FixedClock(now))
    service.import_card("a")
    assert service.grade_review("a", Grade.EASY).state is CardState.LEARNING
