"""Pytest fixtures for swarm-monitor tests."""

from datetime import datetime, timedelta, timezone

import pytest

from src.config.settings import Settings


class FakeClock:
    """Controllable UTC clock injected into components under test."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 2, 7, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def test_settings(state_dir) -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        state_dir=state_dir,
        metrics_enabled=False,
    )
