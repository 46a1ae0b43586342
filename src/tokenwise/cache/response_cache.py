"""
Response caching for tokenwise.

Memoizes provider results by a content fingerprint so repeated operations
are served at zero cost. Entries expire after a TTL and the least recently
used entry is evicted at capacity.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from tokenwise.core.models import UsageStats, calculate_cost, normalize_excerpt

logger = structlog.get_logger()


@dataclass
class CacheEntry:
    """A cached response entry."""

    fingerprint: str
    content: str
    usage: UsageStats
    cost: float
    model: str
    created_at: datetime
    expires_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    hit_count: int = 0

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "fingerprint": self.fingerprint,
            "content": self.content,
            "usage": self.usage.model_dump(),
            "cost": self.cost,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "metadata": self.metadata,
            "hit_count": self.hit_count,
        }


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Cache hit rate as a fraction."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class ResponseCache:
    """
    In-memory LRU response cache with per-entry TTL.

    Reads and writes are serialized by a lock so the cache can be shared
    across callers. Operations never raise.
    """

    def __init__(
        self,
        default_ttl_seconds: int = 3600,
        max_entries: int = 1000,
        sweep_interval_seconds: float = 60.0,
        enabled: bool = True,
    ):
        """
        Initialize the response cache.

        Args:
            default_ttl_seconds: Default cache TTL
            max_entries: Maximum cache entries before LRU eviction
            sweep_interval_seconds: Interval of the background expiry sweep
            enabled: Whether caching is enabled
        """
        self._default_ttl = default_ttl_seconds
        self._max_entries = max(1, max_entries)
        self._sweep_interval = sweep_interval_seconds
        self._enabled = enabled

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._stats = CacheStats()
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def fingerprint(
        operation_type: str,
        model: str,
        excerpt: str,
        template_id: str | None = None,
    ) -> str:
        """
        Compute the cache key for an operation.

        Args:
            operation_type: Operation type value
            model: Model identifier the result was produced by
            excerpt: Identifying parameter text; each "|" separated field is
                normalized and truncated
            template_id: Optional prompt template id

        Returns:
            Hex SHA-256 digest
        """
        fields = [normalize_excerpt(part) for part in excerpt.split("|")]
        canonical = json.dumps(
            {
                "type": str(operation_type),
                "template": template_id or "default",
                "model": model,
                "params": fields,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def lookup(self, fingerprint: str) -> CacheEntry | None:
        """
        Get a cached entry if present and fresh.

        Expired entries are removed and reported as absent. Hits refresh the
        entry's recency.
        """
        if not self._enabled:
            return None

        with self._lock:
            entry = self._entries.get(fingerprint)

            if entry is None:
                self._stats.misses += 1
                logger.debug("Cache miss", fingerprint=fingerprint[:16])
                return None

            if entry.is_expired():
                del self._entries[fingerprint]
                self._stats.misses += 1
                self._stats.expirations += 1
                logger.debug("Cache expired", fingerprint=fingerprint[:16])
                return None

            entry.hit_count += 1
            self._entries.move_to_end(fingerprint)
            self._stats.hits += 1

        logger.debug(
            "Cache hit",
            fingerprint=fingerprint[:16],
            hit_count=entry.hit_count,
        )
        return entry

    def store(
        self,
        fingerprint: str,
        content: str,
        usage: UsageStats,
        model: str,
        ttl: int | None = None,
        operation_type: str | None = None,
        caller_id: str | None = None,
        cost: float | None = None,
    ) -> CacheEntry | None:
        """
        Cache a response.

        Evicts the least recently used entry when the cache is full and the
        fingerprint is new.

        Returns:
            The stored entry, or None if caching is disabled
        """
        if not self._enabled:
            return None

        now = datetime.now(timezone.utc)
        entry = CacheEntry(
            fingerprint=fingerprint,
            content=content,
            usage=usage,
            cost=cost if cost is not None else calculate_cost(
                model, usage.input_tokens, usage.output_tokens
            ),
            model=model,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl if ttl is not None else self._default_ttl),
            metadata={
                "fingerprint": fingerprint,
                "operation_type": operation_type,
                "caller_id": caller_id,
            },
        )

        with self._lock:
            if fingerprint not in self._entries and len(self._entries) >= self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug("Cache eviction", fingerprint=evicted[:16])
            self._entries[fingerprint] = entry
            self._entries.move_to_end(fingerprint)

        logger.debug("Cached response", fingerprint=fingerprint[:16], model=model)
        return entry

    def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats.expirations += len(expired)

        if expired:
            logger.debug("Cache sweep", removed=len(expired))
        return len(expired)

    def invalidate(self, model: str | None = None) -> int:
        """
        Drop cached entries.

        Args:
            model: Only drop entries produced by this model; all when None

        Returns:
            Number of entries removed
        """
        with self._lock:
            if model is None:
                count = len(self._entries)
                self._entries.clear()
                return count

            keys = [key for key, entry in self._entries.items() if entry.model == model]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._stats = CacheStats()

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            cached_cost = sum(entry.cost for entry in self._entries.values())
            return {
                "size": len(self._entries),
                "capacity": self._max_entries,
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "hit_rate": self._stats.hit_rate,
                "evictions": self._stats.evictions,
                "expirations": self._stats.expirations,
                "cached_cost_usd": round(cached_cost, 6),
                "enabled": self._enabled,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            return fingerprint in self._entries

    async def start_sweeper(self) -> None:
        """Start the periodic expiry sweep on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        """Stop the periodic expiry sweep."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.cleanup()
