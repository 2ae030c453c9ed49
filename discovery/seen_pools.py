"""
SEEN POOL STORE

Owned state of the new-token detector: which pools have already been
reported as discoveries.

GUARANTEES:
- At most one entry per key at any time.
- check-and-insert is a single critical section (`add_if_absent`), so a
  pool is emitted at most once while its entry is retained, regardless of
  which thread or task asks.
- Entries older than the retention window (24h) are purged by `purge_expired`.

Key: pool address by default. With `chain_scoped_keys=True` the key becomes
(chain, address) so identical addresses on different chains do not collide.
"""

import threading
import time
from datetime import datetime, timezone
from itertools import count
from typing import Callable, Dict, Hashable, List, Optional

from safe_math import round_half_up, safe_div

DEFAULT_RETENTION_SECONDS = 24 * 60 * 60


def iso_timestamp(epoch_seconds: float) -> str:
    """Epoch seconds -> ISO-8601 UTC string with millisecond precision."""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class SeenPoolStore:
    """
    Lock-guarded map of discovered pools.

    Entry: {'discovered_at': epoch seconds, 'pool': normalized pool, 'seq': insertion order}
    """

    def __init__(self, retention_seconds: float = DEFAULT_RETENTION_SECONDS,
                 chain_scoped_keys: bool = False,
                 clock: Callable[[], float] = time.time):
        self.retention_seconds = retention_seconds
        self.chain_scoped_keys = chain_scoped_keys
        self._clock = clock

        self._entries: Dict[Hashable, Dict] = {}
        self._lock = threading.Lock()
        self._seq = count()

    def key_for(self, pool: Dict) -> Hashable:
        address = pool.get('address')
        if self.chain_scoped_keys:
            return (pool.get('chain'), address)
        return address

    def contains(self, pool: Dict) -> bool:
        with self._lock:
            return self.key_for(pool) in self._entries

    def add_if_absent(self, pool: Dict, discovered_at: Optional[float] = None) -> bool:
        """
        Record a discovery unless the key is already tracked.

        Returns:
            True if recorded (caller should emit), False if already seen
        """
        key = self.key_for(pool)
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = {
                'discovered_at': self._clock() if discovered_at is None else discovered_at,
                'pool': pool,
                'seq': next(self._seq),
            }
            return True

    def purge_expired(self) -> int:
        """Remove entries older than the retention window. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [
                key for key, entry in self._entries.items()
                if now - entry['discovered_at'] > self.retention_seconds
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def recent(self, limit: int = 50, chain: Optional[str] = None) -> List[Dict]:
        """
        Most recent discoveries first.

        Returns:
            Pool dicts augmented with `discoveredAt` (ISO) and
            `timeSinceDiscovery` (whole seconds, computed now)
        """
        with self._lock:
            entries = [
                entry for entry in self._entries.values()
                if not chain or entry['pool'].get('chain') == chain
            ]

        entries.sort(key=lambda e: (e['discovered_at'], e['seq']), reverse=True)

        now = self._clock()
        return [
            {
                **entry['pool'],
                'discoveredAt': iso_timestamp(entry['discovered_at']),
                'timeSinceDiscovery': int(max(0.0, now - entry['discovered_at'])),
            }
            for entry in entries[:max(limit, 0)]
        ]

    def stats(self) -> Dict:
        """Total tracked, per-chain histogram, mean snipe score (rounded)."""
        with self._lock:
            pools = [entry['pool'] for entry in self._entries.values()]

        by_chain: Dict[str, int] = {}
        total_score = 0
        for pool in pools:
            chain = pool.get('chain')
            by_chain[chain] = by_chain.get(chain, 0) + 1
            total_score += pool.get('snipeScore') or 0

        return {
            'totalPoolsTracked': len(pools),
            'poolsByChain': by_chain,
            'averageSnipeScore': round_half_up(safe_div(total_score, len(pools))),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
