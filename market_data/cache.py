"""
MARKET DATA CACHE

In-memory TTL cache shared by every caller of the market data client.
Bounds the outbound request rate: a key fetched within the last TTL window
is served from memory without touching the network.

NOTE: there is no single-flight lock. Two callers missing the same key at
the same time will both go upstream. Reads are idempotent, so the only cost
is a duplicate request.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional


class TTLCache:
    """
    Thread-safe in-memory cache with per-entry expiry.

    Features:
    - TTL-based expiration (checked lazily on read)
    - Size limit with LRU eviction
    - Injectable clock for deterministic tests
    """

    def __init__(self, ttl_seconds: float = 30, max_size: int = 1000,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            ttl_seconds: Lifetime of an entry
            max_size: Maximum number of entries before LRU eviction
            clock: Returns current time in seconds
        """
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock

        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

        # Stats
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss / expiry."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self.misses += 1
                return None

            now = self._clock()
            if now >= entry['expires_at']:
                del self._cache[key]
                self.misses += 1
                return None

            entry['last_accessed'] = now
            self.hits += 1
            return entry['value']

    def set(self, key: str, value: Any):
        """Store a value for ttl_seconds."""
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._evict_lru()

            now = self._clock()
            self._cache[key] = {
                'value': value,
                'last_accessed': now,
                'expires_at': now + self.ttl_seconds,
            }

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._cache.items()
                if now >= entry['expires_at']
            ]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)

    def _evict_lru(self):
        if not self._cache:
            return
        lru_key = min(self._cache, key=lambda k: self._cache[k]['last_accessed'])
        del self._cache[lru_key]
        self.evictions += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0

            return {
                'size': len(self._cache),
                'max_size': self.max_size,
                'hits': self.hits,
                'misses': self.misses,
                'hit_rate_pct': hit_rate,
                'evictions': self.evictions,
                'ttl_seconds': self.ttl_seconds,
            }
