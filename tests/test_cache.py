"""Tests for adrecon/cache.py: CacheStore expiry, stats and key helper."""

from __future__ import annotations

import json
from pathlib import Path

from adrecon.cache import CacheStore, rate_cache_key


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _store(tmp: Path, clock=None) -> CacheStore:
    if clock is None:
        return CacheStore(tmp / "test_cache.db")
    return CacheStore(tmp / "test_cache.db", clock=clock)


# ─────────────────────────────────────────────────────────────────────────────
# CacheStore: basic get / set
# ─────────────────────────────────────────────────────────────────────────────


class TestCacheGetSet:
    def test_miss_returns_none(self, tmp_path):
        assert _store(tmp_path).get("nonexistent_key") is None

    def test_set_then_get(self, tmp_path):
        s = _store(tmp_path)
        s.set("k1", json.dumps({"PEN": 3.75}))
        assert json.loads(s.get("k1")) == {"PEN": 3.75}

    def test_set_overwrites_existing(self, tmp_path):
        s = _store(tmp_path)
        s.set("k1", "first")
        s.set("k1", "second")
        assert s.get("k1") == "second"

    def test_creates_parent_directory(self, tmp_path):
        s = CacheStore(tmp_path / "nested" / "dir" / "rates.db")
        s.set("k", "v")
        assert (tmp_path / "nested" / "dir" / "rates.db").exists()

    def test_persists_across_instances(self, tmp_path):
        _store(tmp_path).set("k", "v")
        assert _store(tmp_path).get("k") == "v"


# ─────────────────────────────────────────────────────────────────────────────
# CacheStore: expiry
# ─────────────────────────────────────────────────────────────────────────────


class TestCacheExpiry:
    def test_entry_valid_before_ttl(self, tmp_path):
        clock = FakeClock()
        s = _store(tmp_path, clock)
        s.set("k", "v", ttl_seconds=60)
        clock.now += 59
        assert s.get("k") == "v"

    def test_entry_expires_after_ttl(self, tmp_path):
        clock = FakeClock()
        s = _store(tmp_path, clock)
        s.set("k", "v", ttl_seconds=60)
        clock.now += 61
        assert s.get("k") is None

    def test_no_ttl_never_expires(self, tmp_path):
        clock = FakeClock()
        s = _store(tmp_path, clock)
        s.set("k", "v")
        clock.now += 10**9
        assert s.get("k") == "v"

    def test_purge_expired_removes_only_stale(self, tmp_path):
        clock = FakeClock()
        s = _store(tmp_path, clock)
        s.set("old", "1", ttl_seconds=10)
        s.set("new", "2", ttl_seconds=1000)
        clock.now += 100
        assert s.purge_expired() == 1
        assert s.get("new") == "2"

    def test_clear(self, tmp_path):
        s = _store(tmp_path)
        s.set("a", "1")
        s.set("b", "2")
        assert s.clear() == 2
        assert s.get("a") is None


# ─────────────────────────────────────────────────────────────────────────────
# CacheStore: stats
# ─────────────────────────────────────────────────────────────────────────────


class TestCacheStats:
    def test_initial_stats_zero(self, tmp_path):
        assert _store(tmp_path).stats() == {"hits": 0, "misses": 0, "hit_rate": 0.0}

    def test_hits_and_misses(self, tmp_path):
        s = _store(tmp_path)
        s.get("nope")
        s.set("k", "v")
        s.get("k")
        s.get("k")
        assert s.hits == 2
        assert s.misses == 1
        assert s.hit_rate() == round(2 / 3, 4)

    def test_expired_read_counts_as_miss(self, tmp_path):
        clock = FakeClock()
        s = _store(tmp_path, clock)
        s.set("k", "v", ttl_seconds=1)
        clock.now += 2
        s.get("k")
        assert s.misses == 1


class TestRateCacheKey:
    def test_latest(self):
        assert rate_cache_key("latest") == "rates:latest"

    def test_historical(self):
        assert (
            rate_cache_key("historical", "pen", "2026-01-31")
            == "rates:historical:PEN:2026-01-31"
        )
