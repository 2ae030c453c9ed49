from datetime import datetime, timezone

import pytest

NOW = 1_700_000_000.0


def iso_at(epoch):
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat(timespec='seconds').replace('+00:00', 'Z')


class ManualClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTransport:
    """Records (url, params) calls and answers from a url-substring route table."""

    def __init__(self, routes=None, error=None):
        self.routes = routes or {}
        self.error = error
        self.calls = []

    async def __call__(self, url, params=None):
        self.calls.append((url, params))
        if self.error is not None:
            raise self.error
        for fragment, body in self.routes.items():
            if fragment in url:
                return body
        return None

    def count(self, fragment):
        return sum(1 for url, _ in self.calls if fragment in url)


class FakeMarketClient:
    """Stand-in for GeckoTerminalAPI returning pre-normalized pools."""

    def __init__(self, new_pools=None, trending=None, error=None):
        self.new_pools = new_pools or {}
        self.trending = trending or {}
        self.error = error
        self.calls = []
        self.closed = False

    async def get_new_pools(self, chain=None, limit=50):
        self.calls.append(('new', chain, limit))
        if self.error is not None:
            raise self.error
        return list(self.new_pools.get(chain, []))[:limit]

    async def get_trending_pools(self, chain=None, limit=24):
        self.calls.append(('trending', chain, limit))
        if chain is None:
            pools = [p for chain_pools in self.trending.values() for p in chain_pools]
        else:
            pools = list(self.trending.get(chain, []))
        return pools[:limit]

    async def close(self):
        self.closed = True

    def get_stats(self):
        return {'total_requests': len(self.calls), 'errors': 0, 'cache': {}}


class FakeSocketServer:
    """Records handler registration and emits like socketio.AsyncServer."""

    def __init__(self):
        self.handlers = {}
        self.emitted = []

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, **kwargs):
        self.emitted.append((event, data, to))

    async def trigger(self, event, sid, *args):
        return await self.handlers[event](sid, *args)

    def events_for(self, sid, event=None):
        return [(e, d) for e, d, to in self.emitted if to == sid and (event is None or e == event)]


def make_pool(address='0xabc', chain='ethereum', liquidity=5000.0, age=120, **overrides):
    pool = {
        'id': f"{chain}_{address}",
        'address': address,
        'name': 'PEPE / WETH',
        'chain': chain,
        'dex': 'uniswap_v2',
        'priceUSD': 0.001,
        'priceNative': 0.0000004,
        'priceChange24h': 0.0,
        'priceChange1h': 0.0,
        'priceChange5m': 0.0,
        'volume24h': 0.0,
        'volume1h': 0.0,
        'liquidity': liquidity,
        'fdv': 0.0,
        'marketCap': 0.0,
        'baseToken': {'address': '0xbase', 'symbol': 'PEPE', 'name': 'Pepe'},
        'quoteToken': {'address': '0xquote', 'symbol': 'WETH', 'name': 'Wrapped Ether'},
        'createdAt': None,
        'ageSeconds': age,
        'ageFormatted': '2m',
        'txns24h': {'buys': 0, 'sells': 0},
        'url': f"https://www.geckoterminal.com/eth/pools/{address}",
    }
    pool.update(overrides)
    return pool


def make_raw_pool(address='0xabc', network='eth', name='PEPE / WETH', age=120,
                  reserve='5000', attributes=None, relationships=None, now=NOW):
    attrs = {
        'address': address,
        'name': name,
        'base_token_price_usd': '0.0012',
        'base_token_price_native_currency': '0.0000004',
        'price_change_percentage': {'m5': '2.1', 'h1': '15.5', 'h24': '120'},
        'volume_usd': {'h1': '5000', 'h24': '80000'},
        'reserve_in_usd': reserve,
        'fdv_usd': None,
        'market_cap_usd': None,
        'pool_created_at': iso_at(now - age) if age is not None else None,
        'transactions': {'h24': {'buys': 60, 'sells': 50}},
    }
    attrs.update(attributes or {})
    rels = {
        'base_token': {'data': {'id': f"{network}_0xbase", 'type': 'token'}},
        'quote_token': {'data': {'id': f"{network}_0xquote", 'type': 'token'}},
        'dex': {'data': {'id': 'uniswap_v2', 'type': 'dex'}},
    }
    if relationships is not None:
        rels = relationships
    return {'id': f"{network}_{address}", 'type': 'pool', 'attributes': attrs, 'relationships': rels}


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sio():
    return FakeSocketServer()
