"""
HTTP API (aiohttp.web)

  GET /                                         service banner
  GET /api/health                               liveness + detector/cache stats
  GET /api/tokens/trending|new|hot|discoveries  pool lists (with snipe scores)
  GET /api/tokens/search?q=                     free-text search
  GET /api/tokens/lists/gainers|losers          24h movers
  GET /api/tokens/{address}                     token info
  GET /api/pairs/trending|new                   raw pool lists
  GET /api/pairs/{chain}/{pairAddress}          pool details
  GET /api/pairs/{chain}/{pairAddress}/chart    OHLCV candles

Success: {"success": true, "data": ...}. Failure: {"error": "..."}.
"""

import functools
import logging
import time
from typing import Any, Dict, Optional, Tuple

import aiohttp_cors
from aiohttp import web

from discovery.new_token_detector import NewTokenDetector
from discovery.seen_pools import iso_timestamp
from market_data.geckoterminal_api import GeckoTerminalAPI
from market_data.snipe_score import calculate_snipe_score

logger = logging.getLogger(__name__)

CLIENT_KEY = web.AppKey('client', GeckoTerminalAPI)
DETECTOR_KEY = web.AppKey('detector', NewTokenDetector)
STARTED_AT_KEY = web.AppKey('started_at', float)

HOT_MIN_VOLUME_USD = 10000
HOT_MAX_AGE_SECONDS = 24 * 60 * 60
HOT_FETCH_LIMIT = 100
MIN_SEARCH_LENGTH = 2

# interval -> (timeframe, fixed aggregate or None to read ?aggregate=)
CHART_INTERVALS: Dict[str, Tuple[str, Optional[int]]] = {
    '1m': ('minute', 1),
    '5m': ('minute', 5),
    '15m': ('minute', 15),
    '1h': ('hour', 1),
    '4h': ('hour', 4),
    '1d': ('day', 1),
    'minute': ('minute', None),
    'hour': ('hour', None),
    'day': ('day', None),
}

routes = web.RouteTableDef()


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def query_int(request: web.Request, name: str, default: int) -> int:
    """Lenient integer query parameter: missing, invalid or zero -> default."""
    try:
        value = int(request.query.get(name, ''))
    except ValueError:
        return default
    return value or default


def query_float(request: web.Request, name: str, default: float) -> float:
    try:
        value = float(request.query.get(name, ''))
    except ValueError:
        return default
    return value or default


def _now_iso() -> str:
    return iso_timestamp(time.time())


def _success(data: Any, **extra) -> web.Response:
    return web.json_response({'success': True, 'data': data, **extra})


def _error(message: str, status: int) -> web.Response:
    return web.json_response({'error': message}, status=status)


def _with_scores(pools):
    return [{**pool, 'snipeScore': calculate_snipe_score(pool)} for pool in pools]


def fails_with(message: str):
    """Turn an unexpected handler exception into a 500 with a route-specific message."""
    def decorator(handler):
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.Response:
            try:
                return await handler(request)
            except web.HTTPException:
                raise
            except Exception as e:
                logger.exception(f"[API] {message}: {e}")
                return _error(message, 500)
        return wrapper
    return decorator


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return _error('Not found', 404)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"[API] Unhandled error on {request.method} {request.path}: {e}")
        return _error('Internal server error', 500)


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------

@routes.get('/')
async def root(request: web.Request) -> web.Response:
    return web.json_response({
        'message': 'Snipe Radar backend is running',
        'endpoints': {
            'health': '/api/health',
            'tokens': '/api/tokens',
            'pairs': '/api/pairs',
            'socket': '/socket.io/',
        },
    })


@routes.get('/api/health')
async def health(request: web.Request) -> web.Response:
    return web.json_response({
        'status': 'ok',
        'timestamp': _now_iso(),
        'uptime': time.monotonic() - request.app[STARTED_AT_KEY],
        'detector': request.app[DETECTOR_KEY].get_detector_stats(),
        'cache': request.app[CLIENT_KEY].get_stats(),
    })


# ----------------------------------------------------------------------
# Tokens
# ----------------------------------------------------------------------

@routes.get('/api/tokens/trending')
@fails_with('Failed to fetch trending tokens')
async def trending_tokens(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 24)
    chain = request.query.get('chain')

    pools = await request.app[CLIENT_KEY].get_trending_pools(chain, limit)
    return _success(_with_scores(pools), source='live', timestamp=_now_iso())


@routes.get('/api/tokens/new')
@fails_with('Failed to fetch new tokens')
async def new_tokens(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 50)
    chain = request.query.get('chain')
    min_liquidity = query_float(request, 'minLiquidity', 0.0)

    pools = await request.app[CLIENT_KEY].get_new_pools(chain, limit * 2)
    pools = [pool for pool in pools if pool['liquidity'] >= min_liquidity]
    return _success(_with_scores(pools)[:limit], source='live', timestamp=_now_iso())


@routes.get('/api/tokens/hot')
@fails_with('Failed to fetch hot tokens')
async def hot_tokens(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 20)
    chain = request.query.get('chain')

    pools = await request.app[CLIENT_KEY].get_new_pools(chain, HOT_FETCH_LIMIT)
    hot = [
        {**pool, 'snipeScore': calculate_snipe_score(pool), 'isHot': True}
        for pool in pools
        if pool['volume24h'] > HOT_MIN_VOLUME_USD
        and (pool.get('ageSeconds') is None or pool['ageSeconds'] < HOT_MAX_AGE_SECONDS)
    ]
    hot.sort(key=lambda p: p['volume24h'], reverse=True)
    return _success(hot[:limit], source='live', timestamp=_now_iso())


@routes.get('/api/tokens/discoveries')
@fails_with('Failed to fetch discoveries')
async def discoveries(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 50)
    chain = request.query.get('chain')

    detector = request.app[DETECTOR_KEY]
    return _success(
        detector.get_recent_discoveries(limit, chain),
        stats=detector.get_detector_stats(),
        timestamp=_now_iso(),
    )


@routes.get('/api/tokens/search')
@fails_with('Failed to search tokens')
async def search_tokens(request: web.Request) -> web.Response:
    query = request.query.get('q', '')
    limit = query_int(request, 'limit', 20)

    if len(query) < MIN_SEARCH_LENGTH:
        return _success([])

    results = await request.app[CLIENT_KEY].search_tokens(query, limit)
    return _success(results, source='live')


@routes.get('/api/tokens/lists/gainers')
@fails_with('Failed to fetch gainers')
async def gainers(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 20)
    chain = request.query.get('chain') or 'ethereum'

    pools = await request.app[CLIENT_KEY].get_top_gainers(chain, limit)
    return _success(pools, source='live')


@routes.get('/api/tokens/lists/losers')
@fails_with('Failed to fetch losers')
async def losers(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 20)
    chain = request.query.get('chain') or 'ethereum'

    pools = await request.app[CLIENT_KEY].get_top_losers(chain, limit)
    return _success(pools, source='live')


# Must stay after the fixed /api/tokens/* paths
@routes.get('/api/tokens/{address}')
@fails_with('Failed to fetch token')
async def token_details(request: web.Request) -> web.Response:
    address = request.match_info['address']
    chain = request.query.get('chain') or 'ethereum'

    token = await request.app[CLIENT_KEY].get_token_info(chain, address)
    if not token:
        return _error('Token not found', 404)
    return _success(token, source='live')


# ----------------------------------------------------------------------
# Pairs
# ----------------------------------------------------------------------

@routes.get('/api/pairs/trending')
@fails_with('Failed to fetch trending pairs')
async def trending_pairs(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 50)
    chain = request.query.get('chain')

    pools = await request.app[CLIENT_KEY].get_trending_pools(chain, limit)
    return _success(pools, source='live', timestamp=_now_iso())


@routes.get('/api/pairs/new')
@fails_with('Failed to fetch new pairs')
async def new_pairs(request: web.Request) -> web.Response:
    limit = query_int(request, 'limit', 50)
    chain = request.query.get('chain')

    pools = await request.app[CLIENT_KEY].get_new_pools(chain, limit)
    return _success(pools, source='live', timestamp=_now_iso())


@routes.get('/api/pairs/{chain}/{pairAddress}')
@fails_with('Failed to fetch pair')
async def pair_details(request: web.Request) -> web.Response:
    chain = request.match_info['chain']
    pair_address = request.match_info['pairAddress']

    pool = await request.app[CLIENT_KEY].get_pool_details(chain, pair_address)
    if not pool:
        return _error('Pair not found', 404)
    return _success(pool, source='live')


def resolve_interval(interval: str, aggregate: int) -> Tuple[str, int]:
    """Chart interval name -> (timeframe, aggregate). Unknown names fall back to 1h."""
    timeframe, fixed = CHART_INTERVALS.get(interval, CHART_INTERVALS['1h'])
    return timeframe, fixed if fixed is not None else aggregate


@routes.get('/api/pairs/{chain}/{pairAddress}/chart')
@fails_with('Failed to fetch chart data')
async def pair_chart(request: web.Request) -> web.Response:
    chain = request.match_info['chain']
    pair_address = request.match_info['pairAddress']
    interval = request.query.get('interval') or 'hour'
    timeframe, aggregate = resolve_interval(interval, query_int(request, 'aggregate', 1))

    candles = await request.app[CLIENT_KEY].get_pool_ohlcv(chain, pair_address, timeframe, aggregate)
    return _success(candles, source='live', interval=interval)


# ----------------------------------------------------------------------
# Assembly
# ----------------------------------------------------------------------

def setup_routes(app: web.Application, client: GeckoTerminalAPI, detector: NewTokenDetector,
                 allowed_origins='*') -> web.Application:
    """
    Register the API on `app` with CORS for the configured origins.

    Args:
        allowed_origins: '*' or a list of origins
    """
    app[CLIENT_KEY] = client
    app[DETECTOR_KEY] = detector
    app[STARTED_AT_KEY] = time.monotonic()

    app.middlewares.append(error_middleware)
    registered = app.router.add_routes(routes)

    origins = allowed_origins if isinstance(allowed_origins, list) else [allowed_origins]
    cors = aiohttp_cors.setup(app, defaults={
        origin: aiohttp_cors.ResourceOptions(allow_headers='*', expose_headers='*')
        for origin in origins
    })
    # GET and HEAD share a resource; configure each resource once
    for resource in dict.fromkeys(route.resource for route in registered):
        cors.add(resource)

    logger.info(f"[API] {len(registered)} routes registered")
    return app
