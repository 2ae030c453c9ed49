"""
GECKOTERMINAL API CLIENT

FREE API for new, trending and per-pool market data. No API key.

API Documentation: https://www.geckoterminal.com/dex-api

Endpoints:
- /networks/{network}/new_pools        - recently created pools
- /networks/{network}/trending_pools   - trending pools
- /networks/{network}/pools            - pools list (sortable)
- /networks/{network}/pools/{address}  - single pool
- /networks/{network}/pools/{address}/ohlcv/{timeframe} - candles
- /networks/{network}/tokens/{address} - token info
- /search/pools                         - free-text pool search

FAILURE CONTRACT: nothing in this module raises to callers. Network errors,
timeouts, non-200 responses and malformed bodies are logged and surfaced as
None / [] - "no data" is a normal steady-state answer. Failures are never
cached, so the next call retries.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from .cache import TTLCache
from .normalizer import PoolNormalizer, parse_timestamp
from .snipe_score import calculate_snipe_score

logger = logging.getLogger(__name__)

# url, params -> decoded JSON body (or None)
Transport = Callable[[str, Optional[Dict[str, Any]]], Awaitable[Optional[Dict[str, Any]]]]

DEFAULT_BASE_URL = "https://api.geckoterminal.com/api/v2"
DEFAULT_CHAINS = ['ethereum', 'bsc', 'solana', 'base', 'arbitrum']
OHLCV_LIMIT = 500


class GeckoTerminalAPI:
    """
    GeckoTerminal client with a shared TTL cache.

    Every distinct (endpoint, params) pair is cached for `cache_ttl_seconds`
    (30s). A hit returns the cached payload with no network call.

    Usage:
        client = GeckoTerminalAPI(config['geckoterminal'], chains=config['chains'])
        pools = await client.get_new_pools('solana', limit=50)
        await client.close()
    """

    calculate_snipe_score = staticmethod(calculate_snipe_score)

    def __init__(self, config: Dict = None, chains: List[str] = None,
                 transport: Optional[Transport] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            config: `geckoterminal` config section
            chains: Default chain list for aggregated queries
            transport: Optional async (url, params) -> JSON callable.
                       Defaults to an aiohttp GET.
            clock: Returns current time in seconds (cache + ages)
        """
        self.config = config or {}

        self.base_url = self.config.get('base_url', DEFAULT_BASE_URL).rstrip('/')
        self.timeout_seconds = self.config.get('timeout_seconds', 10)
        self.min_request_interval = self.config.get('min_request_interval_seconds', 0.0)

        self.chains = list(chains or DEFAULT_CHAINS)

        self.cache = TTLCache(
            ttl_seconds=self.config.get('cache_ttl_seconds', 30),
            max_size=self.config.get('cache_max_size', 1000),
            clock=clock,
        )
        self.normalizer = PoolNormalizer(self.config.get('network_map'), clock=clock)

        self._transport = transport or self._http_get
        self.session: Optional[aiohttp.ClientSession] = None
        self.last_request_time: Optional[float] = None
        self.request_count = 0
        self.error_count = 0

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={'Accept': 'application/json'},
            )

    async def close(self):
        """Close aiohttp session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _http_get(self, url: str, params: Optional[Dict] = None) -> Optional[Dict]:
        await self._ensure_session()

        # Optional spacing between requests (disabled by default)
        if self.min_request_interval and self.last_request_time:
            elapsed = time.monotonic() - self.last_request_time
            if elapsed < self.min_request_interval:
                await asyncio.sleep(self.min_request_interval - elapsed)

        async with self.session.get(url, params=params) as response:
            self.last_request_time = time.monotonic()

            if response.status == 200:
                return await response.json(content_type=None)
            if response.status == 429:
                logger.warning(f"[GECKOTERMINAL] Rate limited (429): {url}")
            else:
                logger.warning(f"[GECKOTERMINAL] HTTP {response.status}: {url}")
            return None

    async def _api_request(self, endpoint: str, params: Optional[Dict] = None,
                           cache_key: Optional[str] = None) -> Optional[Any]:
        """
        Cached GET returning the body's `data` member.

        Args:
            endpoint: Path below the base URL
            params: Optional query parameters
            cache_key: Explicit cache key (defaults to endpoint + params)

        Returns:
            `data` payload or None on any failure
        """
        key = cache_key or self._cache_key(endpoint, params)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"[GECKOTERMINAL] Cache hit: {key}")
            return cached

        url = f"{self.base_url}{endpoint}"
        self.request_count += 1
        try:
            body = await self._transport(url, params)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self.error_count += 1
            logger.warning(f"[GECKOTERMINAL] Timeout: {endpoint}")
            return None
        except Exception as e:
            self.error_count += 1
            logger.warning(f"[GECKOTERMINAL] Request error for {endpoint}: {e}")
            return None

        if not isinstance(body, dict) or not body.get('data'):
            logger.debug(f"[GECKOTERMINAL] No data returned for {endpoint}")
            return None

        data = body['data']
        self.cache.set(key, data)
        return data

    @staticmethod
    def _cache_key(endpoint: str, params: Optional[Dict]) -> str:
        if not params:
            return endpoint
        query = '&'.join(f"{k}={params[k]}" for k in sorted(params))
        return f"{endpoint}?{query}"

    def _normalize_list(self, data: Any, chain: str) -> List[Dict]:
        if not isinstance(data, list):
            return []
        pools = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                pools.append(self.normalizer.normalize_pool(item, chain))
            except Exception as e:
                logger.warning(f"[GECKOTERMINAL] Error normalizing pool on {chain}: {e}")
        return pools

    # ------------------------------------------------------------------
    # Pool lists
    # ------------------------------------------------------------------

    async def _fetch_chain_pools(self, chain: str, kind: str) -> List[Dict]:
        network = self.normalizer.network_id(chain)
        params = {'page': 1} if kind == 'new_pools' else None
        data = await self._api_request(f"/networks/{network}/{kind}", params)
        return self._normalize_list(data, chain)

    async def _aggregate(self, kind: str) -> List[Dict]:
        results = await asyncio.gather(
            *(self._fetch_chain_pools(chain, kind) for chain in self.chains)
        )
        return [pool for pools in results for pool in pools]

    async def get_new_pools(self, chain: Optional[str] = None, limit: int = 50) -> List[Dict]:
        """
        Fetch recently created pools (NEW PAIRS).

        Args:
            chain: Chain tag, or None to aggregate across the configured chains
            limit: Max number of pools to return

        Returns:
            Normalized pools, newest first
        """
        try:
            if chain:
                pools = await self._fetch_chain_pools(chain, 'new_pools')
            else:
                pools = await self._aggregate('new_pools')
        except Exception as e:
            logger.error(f"[GECKOTERMINAL] get_new_pools failed: {e}")
            return []

        pools.sort(key=lambda p: parse_timestamp(p.get('createdAt')) or 0.0, reverse=True)
        return pools[:limit]

    async def get_trending_pools(self, chain: Optional[str] = None, limit: int = 24) -> List[Dict]:
        """
        Fetch trending pools.

        Args:
            chain: Chain tag, or None to aggregate across the configured chains
            limit: Max number of pools to return
        """
        try:
            if chain:
                pools = await self._fetch_chain_pools(chain, 'trending_pools')
            else:
                pools = await self._aggregate('trending_pools')
        except Exception as e:
            logger.error(f"[GECKOTERMINAL] get_trending_pools failed: {e}")
            return []

        return pools[:limit]

    async def _sorted_by_change(self, chain: str, limit: int, descending: bool) -> List[Dict]:
        network = self.normalizer.network_id(chain)
        params = {
            'sort': 'h24_price_change_percentage',
            'order': 'desc' if descending else 'asc',
            'page': 1,
        }
        data = await self._api_request(f"/networks/{network}/pools", params)
        pools = self._normalize_list(data, chain)
        pools.sort(key=lambda p: p['priceChange24h'], reverse=descending)
        return pools[:limit]

    async def get_top_gainers(self, chain: str = 'ethereum', limit: int = 20) -> List[Dict]:
        """Single-chain pools sorted by 24h price change, highest first."""
        return await self._sorted_by_change(chain, limit, descending=True)

    async def get_top_losers(self, chain: str = 'ethereum', limit: int = 20) -> List[Dict]:
        """Single-chain pools sorted by 24h price change, lowest first."""
        return await self._sorted_by_change(chain, limit, descending=False)

    # ------------------------------------------------------------------
    # Single entities
    # ------------------------------------------------------------------

    async def get_pool_details(self, chain: str, address: str) -> Optional[Dict]:
        network = self.normalizer.network_id(chain)
        data = await self._api_request(f"/networks/{network}/pools/{address}")
        if not isinstance(data, dict):
            return None
        return self.normalizer.normalize_pool(data, chain)

    async def get_pool_ohlcv(self, chain: str, address: str, timeframe: str = 'hour',
                             aggregate: int = 1) -> List[Dict]:
        """
        Fetch candles for a pool.

        Args:
            timeframe: 'minute' | 'hour' | 'day'
            aggregate: Candle width in timeframe units

        Returns:
            List of {time, open, high, low, close, volume}
        """
        network = self.normalizer.network_id(chain)
        data = await self._api_request(
            f"/networks/{network}/pools/{address}/ohlcv/{timeframe}",
            {'aggregate': aggregate, 'limit': OHLCV_LIMIT},
            cache_key=f"ohlcv:{address}:{timeframe}:{aggregate}",
        )
        return self.normalizer.normalize_ohlcv(data)

    async def get_token_info(self, chain: str, address: str) -> Optional[Dict]:
        network = self.normalizer.network_id(chain)
        data = await self._api_request(f"/networks/{network}/tokens/{address}")
        if not isinstance(data, dict):
            return None
        return self.normalizer.normalize_token(data, chain)

    async def search_tokens(self, query: str, limit: int = 20) -> List[Dict]:
        """Free-text pool search across all networks."""
        data = await self._api_request('/search/pools', {'query': query, 'page': 1})
        if not isinstance(data, list):
            return []

        results = []
        for item in data[:limit]:
            if not isinstance(item, dict):
                continue
            try:
                results.append(self.normalizer.normalize_search_result(item))
            except Exception as e:
                logger.warning(f"[GECKOTERMINAL] Error normalizing search result: {e}")
        return results

    def get_stats(self) -> Dict:
        """Get API usage statistics."""
        return {
            'total_requests': self.request_count,
            'errors': self.error_count,
            'cache': self.cache.get_stats(),
        }
