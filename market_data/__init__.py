"""
MARKET DATA MODULE

Upstream market data for the discovery pipeline:

  GeckoTerminal REST API
          ↓
  GeckoTerminalAPI (TTL cache, failure -> empty result)
          ↓
  PoolNormalizer (NORMALIZED POOL dicts)
          ↓
  Detector / Broadcaster / HTTP API
"""

from .cache import TTLCache
from .normalizer import PoolNormalizer, format_age, parse_timestamp
from .snipe_score import calculate_snipe_score
from .geckoterminal_api import GeckoTerminalAPI

__all__ = [
    'TTLCache',
    'PoolNormalizer',
    'format_age',
    'parse_timestamp',
    'calculate_snipe_score',
    'GeckoTerminalAPI',
]
