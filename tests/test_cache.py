"""
test_cache.py — TTL freshness, compare-and-set and stale fallback.

Run with:
    pytest tests/test_cache.py -v
"""

from __future__ import annotations

import pytest

from hazardwatch.core import cache as cache_module
from hazardwatch.core.cache import TTLCache


class TestFreshness:

    def test_miss(self, cache):
        assert cache.get("hazards:earthquake") == (None, False)
        assert cache.get_stale_if_present("hazards:earthquake") is None

    def test_fresh_until_ttl_elapses(self, cache, clock):
        cache.set("k", [1, 2], ttl=120)
        clock.advance(120)
        assert cache.get("k") == ([1, 2], True)
        clock.advance(0.5)
        assert cache.get("k") == ([1, 2], False)

    def test_expired_entry_still_served_stale(self, cache, clock):
        cache.set("k", "payload", ttl=60)
        clock.advance(3600)
        assert cache.get_stale_if_present("k") == "payload"

    def test_keys_independent(self, cache, clock):
        cache.set("a", 1, ttl=10)
        clock.advance(5)
        cache.set("b", 2, ttl=10)
        clock.advance(6)
        assert cache.get("a") == (1, False)
        assert cache.get("b") == (2, True)


class TestCompareAndSet:

    def test_older_write_rejected(self, cache, clock):
        newer = clock() + 10
        assert cache.set("k", "new", ttl=60, fetched_at=newer)
        assert not cache.set("k", "old", ttl=60, fetched_at=newer - 5)
        assert cache.get_stale_if_present("k") == "new"

    def test_equal_timestamp_overwrites(self, cache, clock):
        t = clock()
        cache.set("k", "first", ttl=60, fetched_at=t)
        assert cache.set("k", "second", ttl=60, fetched_at=t)
        assert cache.get_stale_if_present("k") == "second"

    def test_entry_records_fetch_time(self, cache, clock):
        cache.set("k", "v", ttl=30)
        entry = cache.get_entry("k")
        assert entry.fetched_at == clock()
        assert entry.ttl == 30


class TestSeedStale:

    def test_seeds_expired_entry(self, cache):
        assert cache.seed_stale("k", ["restored"], ttl=120)
        value, fresh = cache.get("k")
        assert value == ["restored"]
        assert fresh is False

    def test_does_not_clobber_live_entry(self, cache):
        cache.set("k", "live", ttl=120)
        assert not cache.seed_stale("k", "restored", ttl=120)
        assert cache.get("k") == ("live", True)

    def test_fresh_write_replaces_seed(self, cache):
        cache.seed_stale("k", "restored", ttl=120)
        assert cache.set("k", "live", ttl=120)
        assert cache.get("k") == ("live", True)


class TestEviction:

    def test_evict(self, cache):
        cache.set("k", 1, ttl=10)
        cache.evict("k")
        cache.evict("missing")
        assert cache.keys() == []


# ═══════════════════════════════════════════════════════════════════════════
# Redis mirror
# ═══════════════════════════════════════════════════════════════════════════

class TestMirrorDisabled:

    @pytest.fixture(autouse=True)
    def _disable(self, monkeypatch):
        monkeypatch.setattr(cache_module.settings, "REDIS_ENABLED", False)

    async def test_get_set_are_no_ops(self):
        assert await cache_module.mirror_set("k", {"a": 1}) is False
        assert await cache_module.mirror_get("k") is None
        assert await cache_module.ping_redis() is False


class TestDefaultClock:

    def test_uses_monotonic_clock(self):
        c = TTLCache()
        c.set("k", 1, ttl=60)
        assert c.get("k") == (1, True)
