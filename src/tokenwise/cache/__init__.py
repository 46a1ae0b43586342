"""Exact-match response caching keyed by request fingerprints."""

from tokenwise.cache.response_cache import ResponseCache, CacheEntry, CacheStats

__all__ = [
    "ResponseCache",
    "CacheEntry",
    "CacheStats",
]
