"""Tests for the bounded TTL cache."""

import pytest

from codecontext.cache import TTLCache


class TestTTLCache:
    """Tests for TTLCache."""

    def test_put_and_get(self, clock):
        cache = TTLCache(max_size=2, ttl=10, clock=clock)
        cache.put("a", 1)

        assert cache.get("a") == 1
        assert "a" in cache
        assert len(cache) == 1

    def test_miss_is_counted(self, clock):
        cache = TTLCache(max_size=2, ttl=10, clock=clock)

        assert cache.get("missing") is None
        assert cache.misses == 1
        assert cache.hits == 0
        assert cache.hit_rate == 0.0

    def test_entry_expires_after_ttl(self, clock):
        cache = TTLCache(max_size=2, ttl=10, clock=clock)
        cache.put("a", 1)

        clock.advance(9.9)
        assert cache.get("a") == 1

        clock.advance(0.1)
        assert "a" not in cache
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_lru_evicts_least_recently_used(self, clock):
        cache = TTLCache(max_size=2, ttl=10, policy="lru", clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_fifo_ignores_reads(self, clock):
        cache = TTLCache(max_size=2, ttl=10, policy="fifo", clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "a" not in cache
        assert "b" in cache

    def test_overwrite_refreshes_timestamp(self, clock):
        cache = TTLCache(max_size=2, ttl=10, clock=clock)
        cache.put("a", 1)
        clock.advance(8)
        cache.put("a", 2)
        clock.advance(8)

        assert cache.get("a") == 2

    def test_invalidate_and_clear(self, clock):
        cache = TTLCache(max_size=4, ttl=10, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_hit_rate(self, clock):
        cache = TTLCache(max_size=4, ttl=10, clock=clock)
        cache.put("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("b")

        assert cache.hit_rate == pytest.approx(2 / 3)

    def test_rejects_bad_arguments(self):
        with pytest.raises(ValueError):
            TTLCache(max_size=0, ttl=1)
        with pytest.raises(ValueError):
            TTLCache(max_size=1, ttl=1, policy="random")
