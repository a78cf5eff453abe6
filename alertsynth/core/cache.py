"""TTL + insertion-order LRU cache for generated alert records.

The cache has an explicit lifecycle: ``start_maintenance`` schedules the
periodic expiry sweep on the running event loop and ``close`` cancels it and
drops every entry. ``run_maintenance`` performs one sweep synchronously so
callers and tests never depend on the timer.
"""

import asyncio
import copy
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from alertsynth import metrics
from alertsynth.core.models import Entity

logger = logging.getLogger(__name__)


class CacheEntry:
    """Single cache entry with expiration."""

    def __init__(self, key: str, value: Any, created_at: float, ttl_seconds: float):
        self.key = key
        self.value = value
        self.created_at = created_at
        self.ttl_seconds = ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl_seconds


def alert_cache_key(entity: Entity, namespace: str, variant: str) -> str:
    """Cache key for an alert generated for ``entity`` in ``namespace``."""
    return f"alert:{entity.host_name}:{entity.user_name}:{namespace}:{variant}"


class ResponseCache:
    """Thread-safe response cache with TTL expiry and bounded capacity.

    Args:
        max_size: Maximum number of entries
        ttl_seconds: Entry lifetime
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._maintenance_task: Optional[asyncio.Task] = None

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    @classmethod
    def from_config(cls, config: Any) -> "ResponseCache":
        """Create a cache from a ``CacheConfig``."""
        return cls(max_size=config.max_size, ttl_seconds=config.ttl_seconds)

    def get(self, key: str) -> Optional[Any]:
        """Return a copy of the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                metrics.CACHE_LOOKUPS.labels(result="miss").inc()
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self.expirations += 1
                self.misses += 1
                metrics.CACHE_LOOKUPS.labels(result="expired").inc()
                return None
            self.hits += 1
            metrics.CACHE_LOOKUPS.labels(result="hit").inc()
            return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any) -> None:
        """Insert or replace ``key``; evicts the oldest entry when full."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(key, copy.deepcopy(value), self._clock(), self.ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def run_maintenance(self) -> int:
        """Remove every expired entry now.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)
        if expired:
            logger.debug(f"Cache maintenance removed {len(expired)} expired entries")
        return len(expired)

    def configure(self, max_size: Optional[int] = None, ttl_seconds: Optional[float] = None) -> None:
        """Change capacity and/or TTL at runtime.

        Shrinking the capacity evicts the oldest entries. A new TTL applies to
        entries inserted afterwards.
        """
        with self._lock:
            if max_size is not None:
                if max_size < 1:
                    raise ValueError("max_size must be at least 1")
                self.max_size = max_size
                while len(self._entries) > self.max_size:
                    self._evict_oldest()
            if ttl_seconds is not None:
                if ttl_seconds <= 0:
                    raise ValueError("ttl_seconds must be positive")
                self.ttl_seconds = ttl_seconds

    def _evict_oldest(self) -> None:
        # Caller holds the lock
        key, _ = self._entries.popitem(last=False)
        self.evictions += 1
        logger.debug(f"Evicted oldest cache entry {key}")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total_requests = self.hits + self.misses
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'ttl_seconds': self.ttl_seconds,
                'hits': self.hits,
                'misses': self.misses,
                'hit_rate': self.hits / max(1, total_requests),
                'total_requests': total_requests,
                'evictions': self.evictions,
                'expirations': self.expirations,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_maintenance(self, interval_seconds: float = 900.0) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._maintenance_task is not None and not self._maintenance_task.done():
            return
        self._maintenance_task = asyncio.create_task(self._maintenance_loop(interval_seconds))
        logger.info(f"Cache maintenance started (interval={interval_seconds}s)")

    async def stop_maintenance(self) -> None:
        if self._maintenance_task is None:
            return
        self._maintenance_task.cancel()
        try:
            await self._maintenance_task
        except asyncio.CancelledError:
            pass
        self._maintenance_task = None
        logger.info("Cache maintenance stopped")

    async def close(self) -> None:
        """Stop maintenance and drop every entry."""
        await self.stop_maintenance()
        self.clear()

    async def _maintenance_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.run_maintenance()
            stats = self.get_stats()
            logger.info(
                f"Cache maintenance: removed={removed} size={stats['size']} "
                f"hit_rate={stats['hit_rate']:.2%}"
            )
