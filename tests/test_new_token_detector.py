import asyncio

import pytest

from discovery.new_token_detector import POLL_TASK, SWEEP_TASK, NewTokenDetector
from discovery.scheduler import TaskScheduler
from market_data.geckoterminal_api import GeckoTerminalAPI

from conftest import FakeMarketClient, FakeTransport, make_pool


def _detector(client, clock, chains=('ethereum',), **config):
    return NewTokenDetector(client, config, chains=list(chains), clock=clock)


@pytest.mark.asyncio
async def test_fresh_discovery_emitted_once_with_score(clock):
    pool = make_pool('0xabc', liquidity=5000, age=120,
                     txns24h={'buys': 60, 'sells': 50}, priceChange5m=15)
    detector = _detector(FakeMarketClient({'ethereum': [pool]}), clock)
    received = []
    detector.on_new_pool(received.append)

    await detector.tick()
    clock.advance(15)
    await detector.tick()

    assert len(received) == 1
    event = received[0]
    assert event['address'] == '0xabc'
    assert event['snipeScore'] == 95
    assert event['isNew'] is True
    assert event['discoveredAt'].endswith('Z')
    assert 'snipeScore' not in pool


@pytest.mark.asyncio
async def test_liquidity_boundary(clock):
    client = FakeMarketClient({'ethereum': [
        make_pool('0xbelow', liquidity=999),
        make_pool('0xequal', liquidity=1000),
    ]})
    detector = _detector(client, clock, min_liquidity_usd=1000)

    emitted = await detector.tick()

    assert [e['address'] for e in emitted] == ['0xequal']


@pytest.mark.asyncio
async def test_age_boundary(clock):
    client = FakeMarketClient({'ethereum': [
        make_pool('0xequal', age=3600),
        make_pool('0xover', age=3601),
        make_pool('0xunknown', age=None),
    ]})
    detector = _detector(client, clock, max_age_seconds=3600)

    emitted = await detector.tick()

    assert [e['address'] for e in emitted] == ['0xequal', '0xunknown']


@pytest.mark.asyncio
async def test_filtered_pool_can_be_discovered_later(clock):
    client = FakeMarketClient({'ethereum': [make_pool('0xgrow', liquidity=500)]})
    detector = _detector(client, clock)

    assert await detector.tick() == []
    client.new_pools['ethereum'] = [make_pool('0xgrow', liquidity=2000)]
    assert [e['address'] for e in await detector.tick()] == ['0xgrow']


@pytest.mark.asyncio
async def test_chains_polled_sequentially_in_order(clock):
    client = FakeMarketClient({
        'ethereum': [make_pool('0xe', 'ethereum')],
        'bsc': [make_pool('0xb', 'bsc')],
    })
    detector = _detector(client, clock, chains=['bsc', 'ethereum'])

    emitted = await detector.tick()

    assert [c[1] for c in client.calls] == ['bsc', 'ethereum']
    assert [c[2] for c in client.calls] == [50, 50]
    assert [e['chain'] for e in emitted] == ['bsc', 'ethereum']


@pytest.mark.asyncio
async def test_listener_failure_is_isolated(clock):
    detector = _detector(FakeMarketClient({'ethereum': [make_pool('0xa'), make_pool('0xb')]}), clock)
    seen = []

    def broken(event):
        raise ValueError('listener bug')

    async def async_listener(event):
        seen.append(event['address'])

    detector.on_new_pool(broken)
    detector.on_new_pool(async_listener)

    await detector.tick()

    assert seen == ['0xa', '0xb']
    assert detector.stats['listener_errors'] == 2


@pytest.mark.asyncio
async def test_unregister_listener(clock):
    detector = _detector(FakeMarketClient({'ethereum': [make_pool('0xa')]}), clock)
    received = []
    unregister = detector.on_new_pool(received.append)
    unregister()
    unregister()

    await detector.tick()

    assert received == []
    assert len(detector.get_recent_discoveries()) == 1


@pytest.mark.asyncio
async def test_tick_survives_failing_client(clock):
    detector = _detector(FakeMarketClient(error=RuntimeError('upstream down')), clock,
                         chains=['ethereum', 'bsc'])

    assert await detector.tick() == []
    assert detector.stats['chain_errors'] == 2


@pytest.mark.asyncio
async def test_tick_with_always_throwing_transport(clock):
    client = GeckoTerminalAPI(transport=FakeTransport(error=ConnectionError('down')), clock=clock)
    detector = _detector(client, clock, chains=['ethereum', 'solana'])

    assert await client.get_new_pools('ethereum') == []
    assert await detector.tick() == []


@pytest.mark.asyncio
async def test_sweep_allows_rediscovery_after_retention(clock):
    client = FakeMarketClient({'ethereum': [make_pool('0xa', age=None)]})
    detector = _detector(client, clock, retention_seconds=86400)

    assert len(await detector.tick()) == 1
    clock.advance(86400)
    assert detector.sweep() == 0
    assert await detector.tick() == []

    clock.advance(1)
    assert detector.sweep() == 1
    assert len(await detector.tick()) == 1


@pytest.mark.asyncio
async def test_recent_discoveries_and_stats(clock):
    client = FakeMarketClient({
        'ethereum': [make_pool('0xa', 'ethereum')],
        'bsc': [make_pool('0xb', 'bsc', age=2000)],
    })
    detector = _detector(client, clock, chains=['ethereum', 'bsc'])

    await detector.tick()
    clock.advance(5)

    recent = detector.get_recent_discoveries(10)
    # same discovery time: later insertion first
    assert [p['address'] for p in recent] == ['0xb', '0xa']
    assert all(p['timeSinceDiscovery'] == 5 for p in recent)
    assert [p['address'] for p in detector.get_recent_discoveries(10, 'bsc')] == ['0xb']
    assert len(detector.get_recent_discoveries(1)) == 1

    stats = detector.get_detector_stats()
    assert stats['totalPoolsTracked'] == 2
    assert stats['poolsByChain'] == {'ethereum': 1, 'bsc': 1}
    # 0xa: 50 + 30 = 80, 0xb: 50 + 10 = 60
    assert stats['averageSnipeScore'] == 70
    assert stats['uptime'] >= 0


@pytest.mark.asyncio
async def test_start_ticks_immediately_and_stop_cancels(clock):
    client = FakeMarketClient({'ethereum': [make_pool('0xa')]})
    scheduler = TaskScheduler()
    detector = NewTokenDetector(client, {}, chains=['ethereum'], scheduler=scheduler, clock=clock)

    stop = detector.start({'poll_interval_ms': 60000, 'min_liquidity_usd': 100, 'max_age_seconds': 600})
    await asyncio.sleep(0.05)

    assert detector.filter.min_liquidity_usd == 100
    assert detector.filter.max_age_seconds == 600
    assert len(detector.get_recent_discoveries()) == 1
    assert scheduler.is_running(POLL_TASK)
    assert scheduler.is_running(SWEEP_TASK)

    with pytest.raises(RuntimeError):
        detector.start()

    stop()
    await asyncio.sleep(0)
    assert not scheduler.is_running(POLL_TASK)
    assert not scheduler.is_running(SWEEP_TASK)
    assert not detector.running

    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_scheduler_keeps_running_after_failed_tick():
    scheduler = TaskScheduler()
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError('first tick fails')

    scheduler.schedule('flaky', 0.01, flaky, run_immediately=True)
    await asyncio.sleep(0.1)
    await scheduler.shutdown()

    assert len(calls) >= 2
    assert scheduler.failures['flaky'] == 1
    assert scheduler.runs['flaky'] >= 1
    assert not scheduler.is_running('flaky')
