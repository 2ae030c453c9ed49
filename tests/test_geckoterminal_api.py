import asyncio

import pytest

from market_data.cache import TTLCache
from market_data.geckoterminal_api import GeckoTerminalAPI

from conftest import FakeTransport, ManualClock, make_raw_pool


def _client(transport, clock=None, chains=None, ttl=30):
    clock = clock or ManualClock()
    return GeckoTerminalAPI({'cache_ttl_seconds': ttl}, chains=chains or ['ethereum'],
                            transport=transport, clock=clock)


@pytest.mark.asyncio
async def test_cache_hit_within_ttl(clock):
    transport = FakeTransport({'/new_pools': {'data': [make_raw_pool()]}})
    client = _client(transport, clock)

    first = await client.get_new_pools('ethereum')
    clock.advance(29)
    second = await client.get_new_pools('ethereum')

    assert transport.count('/new_pools') == 1
    assert [p['address'] for p in first] == [p['address'] for p in second] == ['0xabc']

    clock.advance(1)
    await client.get_new_pools('ethereum')
    assert transport.count('/new_pools') == 2


@pytest.mark.asyncio
async def test_cached_pools_get_fresh_age(clock):
    transport = FakeTransport({'/new_pools': {'data': [make_raw_pool(age=120)]}})
    client = _client(transport, clock)

    assert (await client.get_new_pools('ethereum'))[0]['ageSeconds'] == 120
    clock.advance(10)
    assert (await client.get_new_pools('ethereum'))[0]['ageSeconds'] == 130


@pytest.mark.asyncio
async def test_failures_are_not_cached(clock):
    transport = FakeTransport(error=ConnectionError('boom'))
    client = _client(transport, clock)

    assert await client.get_new_pools('ethereum') == []
    transport.error = None
    transport.routes = {'/new_pools': {'data': [make_raw_pool()]}}

    pools = await client.get_new_pools('ethereum')

    assert len(pools) == 1
    assert transport.count('/new_pools') == 2
    assert client.get_stats()['errors'] == 1


@pytest.mark.asyncio
async def test_empty_or_malformed_bodies_return_empty(clock):
    client = _client(FakeTransport({'/new_pools': {'data': []}}), clock)
    assert await client.get_new_pools('ethereum') == []

    client = _client(FakeTransport({'/new_pools': ['not', 'a', 'dict']}), clock)
    assert await client.get_new_pools('ethereum') == []

    client = _client(FakeTransport({'/pools/0xabc': {'data': {'id': 'eth_0xabc'}}}), clock)
    assert (await client.get_pool_details('ethereum', '0xnothing')) is None


@pytest.mark.asyncio
async def test_timeout_returns_empty(clock):
    client = _client(FakeTransport(error=asyncio.TimeoutError()), clock)
    assert await client.get_trending_pools('ethereum') == []
    assert await client.get_pool_ohlcv('ethereum', '0xabc') == []
    assert await client.get_token_info('ethereum', '0xabc') is None


@pytest.mark.asyncio
async def test_aggregates_configured_chains_newest_first(clock):
    transport = FakeTransport({
        '/networks/eth/new_pools': {'data': [make_raw_pool('0xold', 'eth', age=600)]},
        '/networks/bsc/new_pools': {'data': [make_raw_pool('0xnew', 'bsc', age=30)]},
        '/networks/solana/new_pools': {'data': [make_raw_pool('0xmid', 'solana', age=300)]},
    })
    client = _client(transport, clock, chains=['ethereum', 'bsc', 'solana'])

    pools = await client.get_new_pools(limit=2)

    assert [p['address'] for p in pools] == ['0xnew', '0xmid']
    assert [p['chain'] for p in pools] == ['bsc', 'solana']
    assert transport.count('/new_pools') == 3


@pytest.mark.asyncio
async def test_one_failing_chain_does_not_hide_others(clock):
    transport = FakeTransport({'/networks/bsc/trending_pools': {'data': [make_raw_pool('0xb', 'bsc')]}})
    client = _client(transport, clock, chains=['ethereum', 'bsc'])

    pools = await client.get_trending_pools()

    assert [p['address'] for p in pools] == ['0xb']


@pytest.mark.asyncio
async def test_gainers_and_losers_sorted_locally(clock):
    raw = [
        make_raw_pool('0x1', attributes={'price_change_percentage': {'h24': '5'}}),
        make_raw_pool('0x2', attributes={'price_change_percentage': {'h24': '50'}}),
        make_raw_pool('0x3', attributes={'price_change_percentage': {'h24': '-20'}}),
    ]
    transport = FakeTransport({'/networks/eth/pools': {'data': raw}})
    client = _client(transport, clock)

    gainers = await client.get_top_gainers('ethereum', limit=2)
    losers = await client.get_top_losers('ethereum')

    assert [p['address'] for p in gainers] == ['0x2', '0x1']
    assert [p['address'] for p in losers] == ['0x3', '0x1', '0x2']
    orders = [params['order'] for url, params in transport.calls]
    assert orders == ['desc', 'asc']


@pytest.mark.asyncio
async def test_ohlcv_request_and_cache_key(clock):
    body = {'data': {'attributes': {'ohlcv_list': [[1700000000, 1, 2, 0.5, 1.5, 10]]}}}
    transport = FakeTransport({'/ohlcv/minute': body})
    client = _client(transport, clock)

    candles = await client.get_pool_ohlcv('ethereum', '0xabc', 'minute', 5)
    await client.get_pool_ohlcv('ethereum', '0xabc', 'minute', 5)

    assert candles[0]['close'] == 1.5
    url, params = transport.calls[0]
    assert url.endswith('/networks/eth/pools/0xabc/ohlcv/minute')
    assert params == {'aggregate': 5, 'limit': 500}
    assert len(transport.calls) == 1
    assert client.cache.get('ohlcv:0xabc:minute:5') is not None


@pytest.mark.asyncio
async def test_search_marks_results(clock):
    raw = make_raw_pool('0xs', 'bsc')
    raw['relationships']['network'] = {'data': {'id': 'bsc'}}
    transport = FakeTransport({'/search/pools': {'data': [raw]}})
    client = _client(transport, clock)

    results = await client.search_tokens('pepe')

    assert results[0]['chain'] == 'bsc'
    assert results[0]['searchMatch'] is True
    assert transport.calls[0][1] == {'query': 'pepe', 'page': 1}


@pytest.mark.asyncio
async def test_token_info_normalized(clock):
    body = {'data': {'id': 'eth_0xtok', 'attributes': {
        'address': '0xtok', 'name': 'Pepe', 'symbol': 'PEPE', 'decimals': 9, 'price_usd': '0.5',
    }}}
    client = _client(FakeTransport({'/tokens/0xtok': body}), clock)

    token = await client.get_token_info('ethereum', '0xtok')

    assert token['symbol'] == 'PEPE'
    assert token['decimals'] == 9
    assert token['priceUSD'] == 0.5


def test_ttl_cache_expiry_and_eviction():
    clock = ManualClock()
    cache = TTLCache(ttl_seconds=30, max_size=2, clock=clock)

    cache.set('a', 1)
    clock.advance(1)
    cache.set('b', 2)
    clock.advance(1)
    assert cache.get('a') == 1
    cache.set('c', 3)

    assert cache.get('b') is None
    assert cache.get('a') == 1
    assert cache.evictions == 1

    clock.advance(30)
    assert cache.get('a') is None
    assert cache.cleanup_expired() == 1
    assert len(cache) == 0
