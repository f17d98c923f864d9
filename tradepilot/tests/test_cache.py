"""
Tests for the LRU cache primitives.
"""

import pytest

from tradepilot.cache import CacheEntry, LRUCache

from conftest import FakeClock


class TestCacheEntry:

    def test_freshness(self):
        entry = CacheEntry(key="AAPL", payload=1, timestamp=1000.0)
        assert entry.age(now=1030.0) == 30.0
        assert entry.is_fresh(60, now=1030.0)
        assert not entry.is_fresh(60, now=1060.0)


class TestLRUCache:
    """Tests for recency tracking and eviction."""

    def test_put_and_get(self):
        cache = LRUCache(capacity=2, clock=FakeClock(500))
        cache.put("a", 1)
        entry = cache.get("a")
        assert entry.payload == 1
        assert entry.timestamp == 500

    def test_evicts_least_recently_used(self):
        """Reading a key protects it from the next eviction."""
        cache = LRUCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert cache.evictions == 1

    def test_update_never_evicts(self):
        cache = LRUCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)

        assert len(cache) == 2
        assert cache.evictions == 0
        assert cache.get("a").payload == 10
        assert list(cache.keys()) == ["b", "a"]

    def test_peek_does_not_touch_recency(self):
        cache = LRUCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.peek("a")
        cache.put("c", 3)
        assert "a" not in cache

    def test_unbounded(self):
        cache = LRUCache(capacity=None)
        for i in range(500):
            cache.put(i, i)
        assert len(cache) == 500
        assert cache.evictions == 0

    def test_pop_and_clear(self):
        cache = LRUCache(capacity=3)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.pop("a").payload == 1
        assert cache.pop("missing") is None
        cache.clear()
        assert len(cache) == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            LRUCache(capacity=0)
