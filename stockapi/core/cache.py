"""In-memory response cache with TTL expiry and size-bounded LRU eviction.

Search responses are cached per (endpoint, sorted params) so that re-running a
search plan does not spend API quota on identical queries. Eviction is lazy:
expired entries are dropped on read and the least recently used entries are
dropped on write when the byte budget would be exceeded.
"""
from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

# Size assumed for values that cannot be serialized to JSON
FALLBACK_ENTRY_SIZE = 1024


@dataclass
class CacheEntry:
    """A cached value with its insertion timestamp and estimated size in bytes."""

    key: str
    value: Any
    timestamp: float
    size: int


class ResponseCache:
    """Keyed cache with TTL and byte-size-bounded LRU eviction.

    Entries live in an OrderedDict whose order is the recency order: the first
    entry is the least recently used one and is evicted first.
    """

    def __init__(
        self,
        ttl_s: float = 24 * 60 * 60,
        max_size_mb: float = 2048,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            ttl_s: Seconds after insertion during which an entry is valid
            max_size_mb: Upper bound for the summed entry sizes
            clock: Time source returning seconds (injectable for tests)
        """
        self.ttl_s = float(ttl_s)
        self.max_bytes = int(max_size_mb * 1024 * 1024)
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._total_bytes = 0

    @staticmethod
    def generate_key(endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Build a cache key; parameter order does not affect the result."""
        params_str = json.dumps(params, sort_keys=True) if params else ""
        return f"{endpoint}:{params_str}"

    @staticmethod
    def estimate_size(value: Any) -> int:
        """Approximate the memory footprint of a value in bytes."""
        try:
            return len(json.dumps(value)) * 2
        except (TypeError, ValueError):
            return FALLBACK_ENTRY_SIZE

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss or expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() - entry.timestamp > self.ttl_s:
                self._remove(key)
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store a value, evicting least recently used entries as needed."""
        size = self.estimate_size(value)
        with self._lock:
            if key in self._entries:
                self._remove(key)

            while self._total_bytes + size > self.max_bytes and self._entries:
                oldest = next(iter(self._entries))
                self._remove(oldest)

            self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock(), size=size)
            self._total_bytes += size

    def delete(self, key: str) -> bool:
        """Remove an entry; return False if the key was not cached."""
        with self._lock:
            return self._remove(key)

    def clear(self) -> None:
        """Drop all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._total_bytes = 0

    def stats(self) -> Dict[str, int]:
        """Return hit/miss counters and current size."""
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "total_bytes": self._total_bytes,
                "entry_count": len(self._entries),
            }

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _remove(self, key: str) -> bool:
        # Caller holds self._lock
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total_bytes -= entry.size
        return True
