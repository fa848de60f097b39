"""In-memory query-result cache with TTL and FIFO eviction.

Entries expire ``ttl_seconds`` after they are stored. Expired entries are
dropped lazily when looked up and in bulk by ``sweep_expired``, which
``CacheSweeper`` calls from a daemon thread. When the cache is full the
oldest entry by insertion order is evicted; replacing a key keeps its
original position.

Example:
    >>> cache = QueryCache(max_entries=2)
    >>> cache.set("player_stats:a", [1], ttl_seconds=60)
    >>> cache.get("player_stats:a")
    [1]
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sports_store.types import CacheBackend, CacheStats

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """A cached value and when it stops being served.

    Attributes:
        data: Cached query result.
        stored_at: Clock reading when the value was stored.
        ttl_seconds: Lifetime in seconds.
    """

    data: Any
    stored_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl_seconds


class QueryCache:
    """Thread-safe bounded cache keyed by canonical query strings.

    Attributes:
        max_entries: Capacity before FIFO eviction.
    """

    def __init__(self, max_entries: int = 1000, clock: Clock = time.monotonic) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock
        # dict preserves insertion order; the first key is the oldest
        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return None
            self._stats.hits += 1
            return entry.data

    def set(self, key: str, data: Any, ttl_seconds: float) -> None:
        """Store a value, evicting the oldest entry when full."""
        with self._lock:
            entry = CacheEntry(data=data, stored_at=self._clock(), ttl_seconds=ttl_seconds)
            if key in self._entries:
                self._entries[key] = entry
                return
            while len(self._entries) >= self.max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self._stats.evictions += 1
            self._entries[key] = entry

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            self._stats.invalidations += len(doomed)
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries under {prefix!r}")
        return len(doomed)

    def sweep_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats.expirations += len(expired)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Return a snapshot of the cache counters."""
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                invalidations=self._stats.invalidations,
                size=len(self._entries),
            )


class CacheSweeper:
    """Daemon thread that periodically sweeps expired cache entries."""

    def __init__(self, cache: CacheBackend, interval: float = 300.0) -> None:
        self.cache = cache
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="cache-sweeper", daemon=True
        )
        self._thread.start()
        logger.debug(f"Cache sweeper started (every {self.interval}s)")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            removed = self.cache.sweep_expired()
            if removed:
                logger.debug(f"Swept {removed} expired cache entries")
