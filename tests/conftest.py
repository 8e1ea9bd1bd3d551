"""
Shared fixtures for tracker tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ai_quota_guard.core.tracker import UsageTracker
from ai_quota_guard.storage.memory import InMemoryCounterStore


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryCounterStore()


@pytest.fixture
def tracker(store, clock):
    return UsageTracker(store, clock=clock)
