from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from memora.application.stats.metrics_calculator import MetricsCalculator
from memora.application.stats.service import CollectionStatsService
from memora.domain.cards.collection import Collection
from memora.domain.cards.models import CardState, Grade, ReviewLog, create_new


@pytest.fixture
def calculator():
    return MetricsCalculator()


@pytest.fixture
def mock_repo():
    return MagicMock()


def _log(grade, now):
    return ReviewLog(
        key="a",
        grade=grade,
        reviewed_at=now,
        state_before=CardState.REVIEW,
        state_after=CardState.REVIEW,
        stability_before=10.0,
        stability_after=12.0,
        difficulty_before=5.0,
        difficulty_after=5.0,
        elapsed_days=10.0,
        scheduled_days=12.0,
    )


def test_metrics_calculator_retrievability(calculator, make_card, now):
    # Reviewed 1 day ago with stability 10
    card = make_card(last_reviewed_at=now - timedelta(days=1), due_at=now + timedelta(days=9))

    enriched = calculator.enrich(card, now)

    # R = (1 + 19/81 * 0.1) ** -0.5 approx 0.9885
    assert enriched.current_retrievability > 0.98
    assert enriched.current_retrievability < 0.99
    assert enriched.stability == 10.0
    assert enriched.difficulty == 5.0
    assert enriched.days_overdue == pytest.approx(-9.0)


def test_metrics_calculator_lapse_rate(calculator, make_card):
    card = make_card(review_count=10, lapse_count=5)
    assert calculator.enrich(card, card.due_at).lapse_rate == 0.5


def test_metrics_calculator_new_card(calculator, now):
    enriched = calculator.enrich(create_new("n"), now)
    assert enriched.current_retrievability == 1.0
    assert enriched.lapse_rate is None
    assert enriched.days_overdue is None


def test_summarize(calculator, make_card, now):
    cards = Collection(
        [
            create_new("n"),
            make_card("r1", stability=4.0, difficulty=3.0, lapse_count=1),
            make_card("r2", stability=8.0, difficulty=7.0, due_at=now + timedelta(days=1)),
            make_card("l", state=CardState.LEARNING, stability=3.0, difficulty=5.0),
            make_card("x", state=CardState.RELEARNING, stability=1.0, difficulty=5.0),
        ]
    )
    history = [_log(Grade.GOOD, now), _log(Grade.AGAIN, now), _log(Grade.EASY, now)]

    stats = calculator.summarize(cards, now, history)

    assert stats.total == 5
    assert (stats.new, stats.learning, stats.review, stats.relearning) == (1, 1, 2, 1)
    assert stats.due_now == 3
    assert stats.average_stability == pytest.approx(4.0)
    assert stats.average_difficulty == pytest.approx(5.0)
    assert 0 < stats.estimated_retention < 1
    assert stats.total_reviews == 12
    assert stats.total_lapses == 1
    assert stats.answer_accuracy == pytest.approx(2 / 3)


def test_summarize_empty(calculator, now):
    stats = calculator.summarize(Collection(), now)
    assert stats.total == 0
    assert stats.average_stability == 0.0
    assert stats.answer_accuracy is None


def test_stats_service_summary(mock_repo, now):
    collection = Collection([create_new("a")])
    mock_repo.load.return_value = collection

    service = CollectionStatsService(repository=mock_repo)
    stats = service.get_summary(now)

    assert stats.total == 1
    assert stats.new == 1
    mock_repo.load.assert_called_once()


def test_stats_service_weak_cards(mock_repo, make_card, now):
    day = timedelta(days=1)
    mock_repo.load.return_value = Collection(
        [
            create_new("new"),
            # Strong: high stability, reviewed recently, no lapses
            make_card("strong", stability=50.0, last_reviewed_at=now - day, due_at=now + day),
            # Weak by lapses
            make_card("lapsed", stability=50.0, lapse_count=2, last_reviewed_at=now - day),
            # Weak by stability
            make_card("shaky", stability=2.0, last_reviewed_at=now - day),
            # Weak by retrievability
            make_card("forgotten", stability=10.0, last_reviewed_at=now - 60 * day),
        ]
    )

    service = CollectionStatsService(repository=mock_repo)
    weak = service.get_weak_cards(now)

    assert [c.key for c in weak] == ["forgotten", "shaky", "lapsed"]
    assert weak[0].current_retrievability < 0.7


def test_stats_service_weak_thresholds(mock_repo, make_card, now):
    mock_repo.load.return_value = Collection(
        [make_card("a", stability=5.0, last_reviewed_at=now - timedelta(days=1))]
    )
    service = CollectionStatsService(repository=mock_repo)
    assert service.get_weak_cards(now, stability_threshold=3.0) == []
    assert len(service.get_weak_cards(now, stability_threshold=6.0)) == 1
