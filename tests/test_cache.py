"""Tests for UsageCacheStore"""

import json
import pytest

from codex_switcher.cache_manager import UsageCacheStore
from codex_switcher.usage_types import (
    CACHE_VERSION,
    CacheFile,
    SummaryStatus,
    UsageEntry,
    UsageMessage,
    UsageSummary,
    RateLimit,
    RateWindow,
)


def sample_cache():
    cache = CacheFile()
    cache.entries["work"] = UsageEntry(
        summary=UsageSummary(
            plan_type="pro",
            rate_limit=RateLimit(allowed=True, primary=RateWindow(used_percent=10)),
        ),
        fetched_at=1_700_000_000_000,
    )
    cache.entries["home"] = UsageEntry(
        summary=UsageMessage(status=SummaryStatus.WARNING, message="auth.json not found"),
        fetched_at=1_700_000_001_000,
    )
    return cache


class TestUsageCacheStore:
    def test_missing_file_loads_empty(self, store):
        cache = store.load()
        assert cache.version == CACHE_VERSION
        assert cache.entries == {}

    def test_save_and_load(self, store):
        store.save(sample_cache())
        cache = store.load()
        assert set(cache.entries) == {"work", "home"}
        assert cache.entries["work"].summary.plan_type == "pro"
        assert cache.entries["work"].summary.rate_limit.primary.used_percent == 10
        assert cache.entries["home"].summary.status == SummaryStatus.WARNING
        assert cache.entries["home"].fetched_at == 1_700_000_001_000

    def test_file_format(self, store, cache_file):
        store.save(sample_cache())
        raw = json.loads(cache_file.read_text())
        assert raw["version"] == 1
        assert raw["entries"]["work"]["fetchedAt"] == 1_700_000_000_000
        assert raw["entries"]["work"]["summary"]["status"] == "ok"
        assert raw["entries"]["work"]["summary"]["planType"] == "pro"
        assert raw["entries"]["home"]["summary"] == {"status": "warning", "message": "auth.json not found"}

    def test_cache_persists_across_instances(self, cache_file):
        UsageCacheStore(cache_file).save(sample_cache())
        cache = UsageCacheStore(cache_file).load()
        assert "work" in cache.entries

    def test_corrupt_file_loads_empty(self, store, cache_file):
        cache_file.write_text("{ this is not json")
        assert store.load().entries == {}

    def test_wrong_version_loads_empty(self, store, cache_file):
        cache_file.write_text(json.dumps({"version": 99, "entries": {}}))
        assert store.load().entries == {}

    def test_wrong_shape_loads_empty(self, store, cache_file):
        cache_file.write_text(json.dumps(["not", "a", "cache"]))
        assert store.load().entries == {}

    def test_bad_entries_are_dropped(self, store, cache_file):
        cache_file.write_text(json.dumps({
            "version": 1,
            "entries": {
                "good": {"summary": None, "fetchedAt": 5},
                "no_time": {"summary": None},
                "bad_status": {"summary": {"status": "weird"}, "fetchedAt": 5},
            },
        }))
        cache = store.load()
        assert list(cache.entries) == ["good"]
        assert cache.entries["good"].summary is None

    def test_non_finite_timestamps_are_dropped(self, store, cache_file):
        # json.dumps would write these as bare Infinity and NaN too
        cache_file.write_text(
            '{"version": 1, "entries": {'
            '"good": {"summary": null, "fetchedAt": 5}, '
            '"inf": {"summary": null, "fetchedAt": Infinity}, '
            '"nan": {"summary": null, "fetchedAt": NaN}}}'
        )
        cache = store.load()
        assert list(cache.entries) == ["good"]

    def test_non_finite_measurements_become_none(self, store, cache_file):
        cache_file.write_text(
            '{"version": 1, "entries": {"work": {"fetchedAt": 5, "summary": {'
            '"status": "ok", "planType": "plus", "rateLimit": {"primary": '
            '{"usedPercent": Infinity, "resetAfterSeconds": 60}}}}}}'
        )
        cache = store.load()
        window = cache.entries["work"].summary.rate_limit.primary
        assert window.used_percent is None
        assert window.reset_after_seconds == 60

    def test_reads_file_written_by_earlier_releases(self, store, cache_file):
        cache_file.write_text(json.dumps({
            "version": 1,
            "entries": {
                "work": {
                    "summary": {
                        "status": "ok",
                        "planType": "plus",
                        "rateLimit": {
                            "allowed": True,
                            "limitReached": False,
                            "primary": {"usedPercent": 3, "resetAfterSeconds": 100, "limitWindowSeconds": 18000},
                            "secondary": None,
                        },
                        "credits": None,
                    },
                    "fetchedAt": 1700000000000,
                },
            },
        }))
        entry = store.load().entries["work"]
        assert entry.summary.rate_limit.limit_reached is False
        assert entry.summary.rate_limit.primary.limit_window_seconds == 18000
        assert entry.summary.rate_limit.secondary is None

    def test_save_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = UsageCacheStore(blocker / "usage_cache.json")
        assert store.save(sample_cache()) is False

    def test_save_creates_directory(self, tmp_path):
        store = UsageCacheStore.in_directory(tmp_path / "nested" / "dir")
        assert store.save(sample_cache()) is True
        assert store.cache_file.exists()

    def test_clear_removes_file(self, store, cache_file):
        store.save(sample_cache())
        store.clear()
        assert not cache_file.exists()
        store.clear()
