"""Tests for the response cache."""

import asyncio

import pytest

from tokenwise.cache.response_cache import ResponseCache
from tokenwise.core.models import UsageStats, calculate_cost

from .conftest import HAIKU, SONNET


def _store(cache: ResponseCache, key: str, model: str = HAIKU, **kwargs):
    return cache.store(key, f"content for {key}", UsageStats.of(10, 20), model, **kwargs)


class TestFingerprint:
    """Tests for cache key derivation."""

    def test_deterministic(self):
        a = ResponseCache.fingerprint("analysis", HAIKU, "some text|focus")
        b = ResponseCache.fingerprint("analysis", HAIKU, "some text|focus")
        assert a == b
        assert len(a) == 64

    def test_normalizes_case_and_whitespace(self):
        a = ResponseCache.fingerprint("analysis", HAIKU, "Some   TEXT|Focus")
        b = ResponseCache.fingerprint("analysis", HAIKU, "some text|focus")
        assert a == b

    def test_only_leading_excerpt_matters(self):
        prefix = "x" * 100
        a = ResponseCache.fingerprint("general", HAIKU, prefix + "tail one")
        b = ResponseCache.fingerprint("general", HAIKU, prefix + "tail two")
        assert a == b

    def test_model_type_and_template_distinguish(self):
        base = ResponseCache.fingerprint("analysis", HAIKU, "text")
        assert base != ResponseCache.fingerprint("analysis", SONNET, "text")
        assert base != ResponseCache.fingerprint("improvement", HAIKU, "text")
        assert base != ResponseCache.fingerprint("analysis", HAIKU, "text", "optimized_analysis")

    def test_missing_template_is_default(self):
        assert ResponseCache.fingerprint("analysis", HAIKU, "text") == ResponseCache.fingerprint(
            "analysis", HAIKU, "text", None
        )


class TestResponseCache:
    """Tests for lookup, storage, expiry and eviction."""

    def test_store_and_lookup(self):
        cache = ResponseCache()
        _store(cache, "k1")

        entry = cache.lookup("k1")
        assert entry is not None
        assert entry.content == "content for k1"
        assert entry.hit_count == 1
        assert entry.cost == pytest.approx(calculate_cost(HAIKU, 10, 20))
        assert "k1" in cache

    def test_miss(self):
        cache = ResponseCache()
        assert cache.lookup("missing") is None
        assert cache.get_stats()["misses"] == 1

    def test_explicit_cost(self):
        cache = ResponseCache()
        entry = _store(cache, "k1", cost=0.5)
        assert entry.cost == 0.5

    def test_expired_entry_removed(self):
        cache = ResponseCache()
        _store(cache, "k1", ttl=0)

        assert cache.lookup("k1") is None
        assert "k1" not in cache
        assert cache.get_stats()["expirations"] == 1

    def test_cleanup(self):
        cache = ResponseCache()
        _store(cache, "old", ttl=0)
        _store(cache, "fresh")

        assert cache.cleanup() == 1
        assert len(cache) == 1

    def test_lru_eviction(self):
        cache = ResponseCache(max_entries=2)
        _store(cache, "a")
        _store(cache, "b")
        cache.lookup("a")  # b is now least recently used
        _store(cache, "c")

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert cache.get_stats()["evictions"] == 1

    def test_overwrite_does_not_evict(self):
        cache = ResponseCache(max_entries=2)
        _store(cache, "a")
        _store(cache, "b")
        _store(cache, "a")

        assert len(cache) == 2
        assert cache.get_stats()["evictions"] == 0

    def test_disabled(self):
        cache = ResponseCache(enabled=False)
        assert _store(cache, "k1") is None
        assert cache.lookup("k1") is None
        assert len(cache) == 0

    def test_invalidate_by_model(self):
        cache = ResponseCache()
        _store(cache, "a", model=HAIKU)
        _store(cache, "b", model=SONNET)

        assert cache.invalidate(model=HAIKU) == 1
        assert "b" in cache
        assert cache.invalidate() == 1
        assert len(cache) == 0

    def test_stats(self):
        cache = ResponseCache(max_entries=10)
        _store(cache, "a")
        cache.lookup("a")
        cache.lookup("b")

        stats = cache.get_stats()
        assert stats["size"] == 1
        assert stats["capacity"] == 10
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_clear_resets_stats(self):
        cache = ResponseCache()
        _store(cache, "a")
        cache.lookup("a")
        cache.clear()

        assert len(cache) == 0
        assert cache.get_stats()["hits"] == 0

    @pytest.mark.asyncio
    async def test_sweeper_removes_expired(self):
        cache = ResponseCache(sweep_interval_seconds=0.01)
        _store(cache, "old", ttl=0)

        await cache.start_sweeper()
        await asyncio.sleep(0.05)
        await cache.stop_sweeper()

        assert len(cache) == 0
