"""
In-process cache for search results.

Bounded and time-limited: entries live for `ttl_seconds` and, once the cache
holds `max_size` entries, inserting a new key evicts the earliest-inserted
entry. Eviction is FIFO by insertion; reading an entry does not move it.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


def make_search_key(query: str, max_results: int, days_back: int, sort_by: str) -> str:
    """Composite cache key for a search request."""
    return f"{query}|max_results={max_results}&days_back={days_back}&sort_by={sort_by}"


class MemoryCache:
    """Thread-safe FIFO cache with per-entry TTL and hit/miss counters."""

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {
            'hits': 0,
            'misses': 0,
            'sets': 0,
            'evictions': 0,
            'expired': 0,
        }

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats['misses'] += 1
                return None

            inserted_at, value = entry
            if self._clock() - inserted_at > self.ttl_seconds:
                del self._entries[key]
                self._stats['expired'] += 1
                self._stats['misses'] += 1
                logger.debug(f"Memory cache entry expired: {str(key)[:60]}")
                return None

            self._stats['hits'] += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        """Insert or replace a value, evicting the oldest entry when full."""
        with self._lock:
            if key in self._entries:
                # Replacement counts as a fresh insertion
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                oldest_key, _ = self._entries.popitem(last=False)
                self._stats['evictions'] += 1
                logger.debug(f"Memory cache full, evicted: {str(oldest_key)[:60]}")

            self._entries[key] = (self._clock(), value)
            self._stats['sets'] += 1

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() - entry[0] <= self.ttl_seconds

    def __len__(self) -> int:
        return len(self._entries)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, (t, _) in self._entries.items() if now - t > self.ttl_seconds]
            for key in stale:
                del self._entries[key]
            self._stats['expired'] += len(stale)
            return len(stale)

    def clear(self) -> int:
        """Remove all entries. Returns the number removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._stats['hits'] + self._stats['misses']
            return {
                **self._stats,
                'size': len(self._entries),
                'max_size': self.max_size,
                'ttl_seconds': self.ttl_seconds,
                'hit_rate': round(self._stats['hits'] / lookups, 3) if lookups else 0.0,
            }
