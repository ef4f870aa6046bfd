"""
Response Cache - Ephemeral TTL cache for telemetry GET responses

Provides:
- TTL-based expiration
- LRU eviction by entry count
- Hit/miss statistics for observability
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional

from dbpulse.core.logger import get_logger

logger = get_logger('api.cache')


@dataclass
class CacheEntry:
    """Individual cache entry with metadata"""
    key: str
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResponseCache:
    """In-memory LRU cache with a single TTL"""

    def __init__(
        self,
        ttl_seconds: float = 30,
        max_entries: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._lock = Lock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    @staticmethod
    def build_key(path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Build cache key from request path and query params"""
        if not params:
            return path
        query = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return f"{path}?{query}"

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats["misses"] += 1
                return None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._stats["misses"] += 1
                return None

            self._cache.move_to_end(key)
            self._stats["hits"] += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        """Set value in cache"""
        if self._ttl_seconds <= 0:
            return
        with self._lock:
            self._cache.pop(key, None)
            while len(self._cache) >= self._max_entries:
                self._cache.popitem(last=False)
                self._stats["evictions"] += 1
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=self._clock() + self._ttl_seconds,
            )

    def clear(self) -> None:
        """Clear all entries"""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        if count:
            logger.debug(f"Response cache cleared ({count} entries)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0
            return {
                "entries": len(self._cache),
                "hit_rate": round(hit_rate, 1),
                **self._stats,
            }
