"""Shared fixtures for the automation engine test-suite."""

from datetime import UTC, datetime

import pytest

from automation_engine.core.config import Settings
from automation_engine.workflows.models import UserContext

# Monday, mid-day UTC.
FIXED_NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any local .env file."""
    return Settings(
        _env_file=None,
        APP_ENV="test",
        ENABLE_SCHEDULER=False,
        SYSTEM_EVENTS_ENABLED=False,
    )


@pytest.fixture
def user() -> UserContext:
    """A typical active user."""
    return UserContext(
        user_id="user-1",
        email="alex@example.com",
        name="Alex",
        subscription_tier="premium",
        joined_at=datetime(2023, 12, 1, tzinfo=UTC),
        last_active_at=FIXED_NOW,
        properties={
            "workoutsLastWeek": 3,
            "lastWorkoutDate": "2024-01-12T08:00:00Z",
            "currentStreak": 4,
            "totalWorkouts": 41,
        },
    )
