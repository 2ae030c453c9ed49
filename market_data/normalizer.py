"""
POOL NORMALIZER

Converts raw GeckoTerminal JSON (`data` items with `attributes` and
`relationships`) into the NORMALIZED POOL format consumed by the detector,
the broadcaster and the HTTP API.

NORMALIZED POOL FORMAT:
{
  "id": "eth_0x...",
  "address": "0x...",
  "name": "PEPE / WETH",
  "chain": "ethereum",
  "dex": "uniswap_v2",
  "priceUSD": 0.0012,
  "priceNative": 0.0000004,
  "priceChange24h": 120.0,
  "priceChange1h": 15.5,
  "priceChange5m": 2.1,
  "volume24h": 80000,
  "volume1h": 5000,
  "liquidity": 85000,
  "fdv": 0, "marketCap": 0,
  "baseToken": {"address": "0x...", "symbol": "PEPE", "name": "PEPE"},
  "quoteToken": {"address": "0x...", "symbol": "WETH", "name": "WETH"},
  "createdAt": "2024-05-01T12:00:00Z",
  "ageSeconds": 120,
  "ageFormatted": "2m",
  "txns24h": {"buys": 60, "sells": 50},
  "url": "https://www.geckoterminal.com/eth/pools/0x..."
}

Every numeric field is coerced with safe_float/safe_int: the upstream shape
drifts and nulls are common, consumers never see NaN.
"""

import math
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from safe_math import safe_float, safe_int

GECKOTERMINAL_WEB_URL = "https://www.geckoterminal.com"

BASE_SYMBOL_PLACEHOLDER = 'TOKEN'
QUOTE_SYMBOL_PLACEHOLDER = 'QUOTE'

_NAME_SPLIT = re.compile(r'\s*/\s*')

DEFAULT_NETWORK_MAP = {
    'ethereum': 'eth',
    'bsc': 'bsc',
    'solana': 'solana',
    'base': 'base',
    'arbitrum': 'arbitrum',
    'polygon': 'polygon-pos',
    'avalanche': 'avax',
}


def parse_timestamp(value: Any) -> Optional[float]:
    """Parse an ISO-8601 provider timestamp into epoch seconds (None if invalid)."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00')).timestamp()
    except ValueError:
        return None


def format_age(seconds: Optional[int]) -> str:
    """
    Human-readable age.

    Examples:
        >>> format_age(45)
        '45s'
        >>> format_age(3700)
        '1h'
        >>> format_age(None)
        'Unknown'
    """
    if seconds is None or seconds < 0:
        return 'Unknown'
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def _id_suffix(identifier: Any) -> Optional[str]:
    # Provider ids look like "<network>_<address>"
    if not identifier or not isinstance(identifier, str) or '_' not in identifier:
        return None
    return identifier.split('_', 1)[1] or None


def _relationship_id(relationships: Dict, name: str) -> Optional[str]:
    rel = relationships.get(name) or {}
    data = rel.get('data') or {}
    if not isinstance(data, dict):
        return None
    return data.get('id')


class PoolNormalizer:
    """
    Normalizes GeckoTerminal pool, token and candle payloads.

    Args:
        network_map: chain tag -> provider network id (for URLs and search)
        clock: Returns current time in seconds (age computation)
    """

    def __init__(self, network_map: Dict[str, str] = None, clock=time.time):
        self.network_map = dict(network_map or DEFAULT_NETWORK_MAP)
        self._reverse_network_map = {v: k for k, v in self.network_map.items()}
        self._clock = clock

    def network_id(self, chain: str) -> str:
        """Chain tag -> provider network id. Unknown tags pass through."""
        return self.network_map.get(chain, chain)

    def chain_for_network(self, network_id: Optional[str]) -> str:
        """Provider network id -> chain tag ('unknown' when absent)."""
        if not network_id:
            return 'unknown'
        return self._reverse_network_map.get(network_id, network_id)

    def normalize_pool(self, pool: Dict, chain: str) -> Dict:
        """
        Normalize a single provider pool record.

        Args:
            pool: Raw item from the provider `data` array
            chain: Chain tag the pool was fetched for

        Returns:
            Normalized pool dict (see module docstring)
        """
        attrs = pool.get('attributes') or pool
        relationships = pool.get('relationships') or {}

        created_at = attrs.get('pool_created_at') or attrs.get('created_at')
        created_ts = parse_timestamp(created_at)
        age_seconds = None
        if created_ts is not None:
            age_seconds = int(math.floor(self._clock() - created_ts))

        base_symbol, quote_symbol = self._resolve_symbols(attrs)

        address = attrs.get('address') or _id_suffix(pool.get('id'))
        price_change = attrs.get('price_change_percentage') or {}
        volume = attrs.get('volume_usd') or {}
        txns_24h = (attrs.get('transactions') or {}).get('h24') or {}

        dex = attrs.get('dex_id') or _relationship_id(relationships, 'dex')
        if isinstance(attrs.get('dex'), dict):
            dex = attrs['dex'].get('name') or dex

        return {
            'id': pool.get('id'),
            'address': address,
            'name': attrs.get('name') or f"{base_symbol} / {quote_symbol}",
            'chain': chain,
            'dex': dex or 'Unknown DEX',

            # Price data
            'priceUSD': safe_float(attrs.get('base_token_price_usd')),
            'priceNative': safe_float(attrs.get('base_token_price_native_currency')),
            'priceChange24h': safe_float(price_change.get('h24')),
            'priceChange1h': safe_float(price_change.get('h1')),
            'priceChange5m': safe_float(price_change.get('m5')),

            # Volume and liquidity
            'volume24h': safe_float(volume.get('h24')),
            'volume1h': safe_float(volume.get('h1')),
            'liquidity': safe_float(attrs.get('reserve_in_usd')),
            'fdv': safe_float(attrs.get('fdv_usd')),
            'marketCap': safe_float(attrs.get('market_cap_usd')),

            'baseToken': {
                'address': _id_suffix(_relationship_id(relationships, 'base_token')) or attrs.get('base_token_address'),
                'symbol': base_symbol,
                'name': attrs.get('base_token_name') or base_symbol,
            },
            'quoteToken': {
                'address': _id_suffix(_relationship_id(relationships, 'quote_token')) or attrs.get('quote_token_address'),
                'symbol': quote_symbol,
                'name': attrs.get('quote_token_name') or quote_symbol,
            },

            'createdAt': created_at,
            'ageSeconds': age_seconds,
            'ageFormatted': format_age(age_seconds),

            'txns24h': {
                'buys': safe_int(txns_24h.get('buys')),
                'sells': safe_int(txns_24h.get('sells')),
            },

            'url': f"{GECKOTERMINAL_WEB_URL}/{self.network_id(chain)}/pools/{address}",
        }

    def _resolve_symbols(self, attrs: Dict):
        base_symbol = attrs.get('base_token_symbol') or BASE_SYMBOL_PLACEHOLDER
        quote_symbol = attrs.get('quote_token_symbol') or QUOTE_SYMBOL_PLACEHOLDER

        # Fall back to the display name, "BASE / QUOTE"
        still_placeholder = (base_symbol == BASE_SYMBOL_PLACEHOLDER
                             or quote_symbol == QUOTE_SYMBOL_PLACEHOLDER)
        name = attrs.get('name')
        if still_placeholder and isinstance(name, str):
            parts = _NAME_SPLIT.split(name)
            if len(parts) >= 2:
                base_symbol = parts[0].strip() or base_symbol
                quote_symbol = parts[1].strip() or quote_symbol

        return base_symbol, quote_symbol

    def normalize_search_result(self, pool: Dict) -> Dict:
        """Normalize a /search/pools item; chain comes from its network relationship."""
        relationships = pool.get('relationships') or {}
        chain = self.chain_for_network(_relationship_id(relationships, 'network'))
        normalized = self.normalize_pool(pool, chain)
        normalized['searchMatch'] = True
        return normalized

    def normalize_token(self, token: Dict, chain: str) -> Dict:
        """Normalize a /tokens/{address} payload."""
        attrs = token.get('attributes') or token

        return {
            'id': token.get('id'),
            'address': attrs.get('address') or _id_suffix(token.get('id')),
            'name': attrs.get('name') or 'Unknown Token',
            'symbol': attrs.get('symbol') or BASE_SYMBOL_PLACEHOLDER,
            'chain': chain,
            'decimals': safe_int(attrs.get('decimals')) or 18,
            'logoUrl': attrs.get('image_url'),
            'coingeckoId': attrs.get('coingecko_coin_id'),
            'priceUSD': safe_float(attrs.get('price_usd')),
            'fdv': safe_float(attrs.get('fdv_usd')),
            'marketCap': safe_float(attrs.get('market_cap_usd')),
            'totalSupply': attrs.get('total_supply'),
        }

    def normalize_ohlcv(self, payload: Dict) -> List[Dict]:
        """Convert `ohlcv_list` rows [t, o, h, l, c, v] into candle dicts."""
        if not isinstance(payload, dict):
            return []
        attrs = payload.get('attributes') or payload
        rows = attrs.get('ohlcv_list') or []

        candles = []
        for row in rows:
            if not isinstance(row, (list, tuple)) or len(row) < 6:
                continue
            candles.append({
                'time': safe_int(row[0]),
                'open': safe_float(row[1]),
                'high': safe_float(row[2]),
                'low': safe_float(row[3]),
                'close': safe_float(row[4]),
                'volume': safe_float(row[5]),
            })
        return candles
