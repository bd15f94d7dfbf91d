"""Tests for the caller-owned TTL cache."""

import pytest

from posturescan.scanner.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    """Expiry, eviction and counters."""

    def test_get_set(self):
        cache = TTLCache(ttl=10)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache
        assert cache.get("b", "missing") == "missing"

    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("a", 1)
        clock.now += 9.9
        assert cache.get("a") == 1
        clock.now += 0.2
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2)
        clock.now += 5
        assert cache.purge_expired() == 1
        assert "long" in cache

    def test_eviction_at_capacity(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, max_entries=2, clock=clock)
        cache.set("a", 1)
        clock.now += 1
        cache.set("b", 2)
        cache.set("c", 3)
        assert len(cache) == 2
        assert "a" not in cache

    def test_hit_miss_counters(self):
        cache = TTLCache()
        cache.set("a", 1)
        cache.get("a")
        cache.get("zz")
        assert (cache.hits, cache.misses) == (1, 1)

    def test_falsy_values_cached(self):
        cache = TTLCache()
        cache.set("empty", [])
        assert "empty" in cache

    def test_invalid_ttl(self):
        with pytest.raises(ValueError):
            TTLCache(ttl=0)
