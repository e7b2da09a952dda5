from datetime import datetime, timezone

import pytest

from memora.application.scheduler import Scheduler
from memora.domain.cards.collection import Collection
from memora.domain.cards.models import CardMemoryState, CardState


@pytest.fixture
def now():
    return datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler():
    return Scheduler()


@pytest.fixture
def make_card(now):
    """Factory for reviewed cards; defaults to a Review card due right now."""

    def _make(key="card_a", state=CardState.REVIEW, stability=10.0, difficulty=5.0, **kwargs):
        kwargs.setdefault("last_reviewed_at", now.replace(day=1, month=2))
        kwargs.setdefault("due_at", now)
        kwargs.setdefault("review_count", 3)
        return CardMemoryState(
            key=key, state=state, stability=stability, difficulty=difficulty, **kwargs
        )

    return _make


@pytest.fixture
def collection():
    return Collection()


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config and collection files
    monkeypatch.setenv("HOME", str(home))
    for var in ("MEMORA_COLLECTION_PATH", "MEMORA_DESIRED_RETENTION", "MEMORA_MAX_NEW_PER_DAY"):
        monkeypatch.delenv(var, raising=False)
    return home
