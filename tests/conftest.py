"""Shared test fixtures for Codex Switcher tests"""

import json
import pytest
from unittest.mock import MagicMock

from codex_switcher.cache_manager import UsageCacheStore
from codex_switcher.usage_manager import UsageManager
from codex_switcher.usage_types import Snapshot, SnapshotState


# -- Mock API response data --

ACCOUNT_ID = "acct-1234"
ACCESS_TOKEN = "test-access-token"

MOCK_USAGE_RESPONSE = {
    "plan_type": "plus",
    "rate_limit": {
        "allowed": True,
        "limit_reached": False,
        "primary_window": {
            "used_percent": 42,
            "limit_window_seconds": 18000,
            "reset_after_seconds": 3600,
        },
        "secondary_window": {
            "used_percent": 7.5,
            "limit_window_seconds": 604800,
            "reset_after_seconds": 86400,
        },
    },
    "credits": {
        "unlimited": False,
        "balance": "12.50",
    },
}


def write_auth_file(path, tokens=None):
    """Write an auth.json with the given tokens object and return its path"""
    if tokens is None:
        tokens = {"access_token": ACCESS_TOKEN, "account_id": ACCOUNT_ID}
    path.write_text(json.dumps({"tokens": tokens}))
    return str(path)


class FakeClock:
    """Controllable replacement for time.time"""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and returns at once"""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def cache_file(tmp_path):
    return tmp_path / "usage_cache.json"


@pytest.fixture
def store(cache_file):
    return UsageCacheStore(cache_file)


@pytest.fixture
def mock_api():
    """A mock UsageAPI whose snapshots come back ok without network calls"""
    api = MagicMock()
    api.fetch_snapshot.return_value = Snapshot(state=SnapshotState.OK, data=MOCK_USAGE_RESPONSE)
    return api


@pytest.fixture
def manager(store, mock_api, clock, sleep):
    return UsageManager(store, api=mock_api, cache_ttl=900, fetch_delay=2.0, clock=clock, sleep=sleep)
