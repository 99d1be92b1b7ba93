"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta

from moodguard.database.connection import Database
from moodguard.database.models import MoodEntry


@pytest.fixture
def db():
    """Create in-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def base_time():
    """Fixed afternoon timestamp, clear of every built-in time-based trigger."""
    return datetime(2024, 3, 4, 14, 0)


@pytest.fixture
def make_entry(base_time):
    """Factory for mood entries one day apart, starting at base_time."""

    def _make(mood, day=0, warning_signs=(), coping_strategies=(), notes=None, at=None):
        created_at = at or base_time + timedelta(days=day)
        return MoodEntry(
            mood=mood,
            date=created_at.date(),
            created_at=created_at,
            notes=notes,
            warning_signs=tuple(warning_signs),
            coping_strategies=tuple(coping_strategies),
        )

    return _make


@pytest.fixture
def make_entries(make_entry):
    """Build a daily series of entries; warning signs go on the last entry."""

    def _make(scores, last_warning_signs=()):
        entries = [make_entry(score, day=i) for i, score in enumerate(scores)]
        if last_warning_signs:
            entries[-1] = make_entry(
                scores[-1], day=len(scores) - 1, warning_signs=last_warning_signs
            )
        return entries

    return _make


@pytest.fixture
def sample_webhook_url():
    """Sample push gateway webhook URL for testing."""
    return "https://push.example.com/hooks/moodguard/abc123"
