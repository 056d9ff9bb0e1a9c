"""Shared fixtures."""

import pytest

from fakes import FakeRemoteService
from pocketsync.sync import RetryPolicy


@pytest.fixture
def service():
    """A fake service preloaded with two records, newest first."""
    return FakeRemoteService([
        {"id": "a", "title": "first", "created": "2026-01-02"},
        {"id": "b", "title": "second", "created": "2026-01-01"},
    ])


@pytest.fixture
def no_retry():
    """Single subscription attempt, no backoff."""
    return RetryPolicy(max_attempts=1, backoff_seconds=0)
