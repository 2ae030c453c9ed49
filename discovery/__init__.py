"""
DISCOVERY MODULE

New pool discovery with exactly-once reporting per retention window.

Components:
- SeenPoolStore: owned seen-set (lock-guarded check-and-insert, 24h retention)
- DiscoveryFilter: liquidity / age thresholds
- TaskScheduler: cancellable periodic tasks shared with the broadcaster
- NewTokenDetector: poll loop, snipe scoring, listener fan-out, queries
"""

from .seen_pools import SeenPoolStore
from .filters import DiscoveryFilter
from .scheduler import TaskScheduler
from .new_token_detector import NewTokenDetector

__all__ = [
    'SeenPoolStore',
    'DiscoveryFilter',
    'TaskScheduler',
    'NewTokenDetector',
]
