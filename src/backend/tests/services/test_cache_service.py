"""
Tests for the process-local TTL cache.

Tests cover:
- Lazy TTL expiry against a simulated clock
- Size-triggered and periodic sweeps
- Substring and per-AC invalidation
- The cached() decorator
"""

from unittest.mock import AsyncMock

import pytest

from services.cache_service import ProcessLocalCache, cache_keys, cached, get_cache, reset_cache


@pytest.mark.unit
class TestCacheTTL:
    """Tests for expiry semantics."""

    def test_value_expires_after_ttl(self, cache, clock):
        cache.set("k", "v", ttl=1.0)
        clock.advance(1.001)

        # Still physically present until read or swept
        assert len(cache) == 1
        assert cache.get("k", 1.0) is None
        assert len(cache) == 0

    def test_value_valid_at_exact_ttl(self, cache, clock):
        cache.set("k", "v", ttl=1.0)
        clock.advance(1.0)

        assert cache.get("k", 1.0) == "v"

    def test_read_ttl_overrides_stored_ttl(self, cache, clock):
        cache.set("k", "v", ttl=60)
        clock.advance(5)

        assert cache.get("k") == "v"
        assert cache.get("k", ttl=2) is None

    def test_default_for_missing_key(self, cache):
        assert cache.get("missing") is None
        assert cache.get("missing", default=0) == 0

    def test_has_and_contains(self, cache, clock):
        cache.set("k", None, ttl=1)

        assert cache.has("k")
        assert "k" in cache
        clock.advance(2)
        assert not cache.has("k")

    def test_set_overwrites_and_restarts_ttl(self, cache, clock):
        cache.set("k", 1, ttl=10)
        clock.advance(8)
        cache.set("k", 2, ttl=10)
        clock.advance(8)

        assert cache.get("k") == 2


@pytest.mark.unit
class TestCacheSweep:
    """Tests for bulk eviction."""

    def test_sweep_removes_only_expired(self, cache, clock):
        cache.set("short", 1, ttl=1)
        cache.set("long", 2, ttl=100)
        clock.advance(5)

        assert cache.sweep() == 1
        assert cache.get("long") == 2
        assert len(cache) == 1

    def test_sweep_triggered_past_max_entries(self, clock):
        cache = ProcessLocalCache(max_entries=3, clock=clock)
        for i in range(3):
            cache.set(f"k{i}", i, ttl=1)
        clock.advance(2)

        cache.set("fresh", "x", ttl=60)

        assert len(cache) == 1
        assert cache.get("fresh") == "x"

    def test_stats(self, cache, clock):
        cache.set("a", 1, ttl=1)
        cache.set("b", 2, ttl=100)
        cache.get("b")
        cache.get("nope")
        clock.advance(5)

        assert cache.stats() == {"total": 2, "valid": 1, "expired": 1, "hits": 1, "misses": 1}


@pytest.mark.unit
class TestCacheInvalidation:
    """Tests for pattern invalidation."""

    def test_invalidate_by_substring(self, cache):
        cache.set("ac:101:dashboard:stats", 1)
        cache.set("ac:101:booths", 2)
        cache.set("ac:102:booths", 3)

        assert cache.invalidate("booths") == 2
        assert cache.get("ac:101:dashboard:stats") == 1

    def test_invalidate_shard_is_exact(self, cache):
        cache.set(cache_keys.dashboard_stats(101), 1)
        cache.set(cache_keys.booth_list(101), 2)
        cache.set(cache_keys.dashboard_stats(1010), 3)
        cache.set(cache_keys.overview(), 4)

        assert cache.invalidate_shard(101) == 2
        assert cache.get(cache_keys.dashboard_stats(1010)) == 3
        assert cache.get(cache_keys.overview()) == 4

    def test_delete_and_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)

        cache.delete("a")
        cache.delete("a")
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0


@pytest.mark.unit
class TestCacheKeys:
    def test_ac_scoped_keys(self):
        assert cache_keys.dashboard_stats(119) == "ac:119:dashboard:stats"
        assert cache_keys.booth_list(119) == "ac:119:booths"
        assert cache_keys.ac_metadata(119) == "ac:119:metadata"
        assert cache_keys.voter_count(119) == "ac:119:voter:count"
        assert cache_keys.surveyed_count(119) == "ac:119:surveyed:count"


@pytest.mark.unit
class TestCachedDecorator:
    """Tests for the async memoizing decorator."""

    async def test_caches_result(self, cache):
        loader = AsyncMock(return_value=["B1", "B2"])
        wrapped = cached(cache, lambda ac_id: cache_keys.booth_list(ac_id), ttl=60)(loader)

        assert await wrapped(101) == ["B1", "B2"]
        assert await wrapped(101) == ["B1", "B2"]
        await wrapped(102)

        assert loader.await_count == 2

    async def test_none_not_cached(self, cache):
        loader = AsyncMock(return_value=None)
        wrapped = cached(cache, lambda ac_id: f"k:{ac_id}")(loader)

        await wrapped(1)
        await wrapped(1)

        assert loader.await_count == 2

    async def test_expired_result_reloaded(self, cache, clock):
        loader = AsyncMock(return_value=5)
        wrapped = cached(cache, lambda: "k", ttl=1)(loader)

        await wrapped()
        clock.advance(2)
        await wrapped()

        assert loader.await_count == 2


@pytest.mark.unit
class TestCacheSingleton:
    def test_get_cache_returns_same_instance(self):
        reset_cache()
        try:
            first = get_cache()
            first.set("k", 1)
            assert get_cache() is first
            reset_cache()
            assert get_cache() is not first
            assert len(get_cache()) == 0
        finally:
            reset_cache()
