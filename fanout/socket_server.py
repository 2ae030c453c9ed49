"""
FAN-OUT BROADCASTER

Socket.IO front of the service. Owns connection topic memberships and pushes:

  Detector discovery ──→ newPool         → newPools ∪ newPools:<chain>
  subscribe:newPools  ──→ recentPools     → the subscriber only (before any newPool)
  trending timer 30s  ──→ trending:update → trending
  price timer 10s     ──→ price:update    → price:<pairAddress>
                      └─→ chainUpdate     → chain:<chain>
  stats timer 60s     ──→ detectorStats   → newPools

Delivery is best-effort and at-most-once. A connection is inert until it
subscribes; disconnect drops every membership.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

from discovery.scheduler import TaskScheduler
from discovery.seen_pools import iso_timestamp

from .topics import (
    NEW_POOLS,
    TRENDING,
    TopicRegistry,
    chain_topic,
    new_pools_topic,
    price_topic,
    trades_topic,
)

logger = logging.getLogger(__name__)

TRENDING_TASK = 'fanout-trending'
PRICE_TASK = 'fanout-price'
STATS_TASK = 'fanout-stats'


class FanOutBroadcaster:
    """
    Usage:
        sio = socketio.AsyncServer(async_mode='aiohttp')
        broadcaster = FanOutBroadcaster(sio, client, detector, scheduler, config['fanout'])
        broadcaster.start()
    """

    def __init__(self, sio, client, detector, scheduler: Optional[TaskScheduler] = None,
                 config: Dict = None, clock: Callable[[], float] = time.time):
        """
        Args:
            sio: socketio.AsyncServer (anything with on() and async emit())
            client: GeckoTerminalAPI
            detector: NewTokenDetector whose discoveries are relayed
            scheduler: Shared lifecycle manager for the snapshot timers
            config: `fanout` config section
        """
        self.sio = sio
        self.client = client
        self.detector = detector
        self.scheduler = scheduler or detector.scheduler
        self.config = config or {}
        self._clock = clock

        self.snapshot_limit = self.config.get('snapshot_limit', 20)
        self.trending_limit = self.config.get('trending_limit', 24)
        self.price_chains = list(self.config.get('price_chains', ['ethereum', 'bsc', 'solana']))
        self.price_pools_per_chain = self.config.get('price_pools_per_chain', 10)
        self.chain_update_pools = self.config.get('chain_update_pools', 10)

        self.topics = TopicRegistry()
        self._send_locks: Dict[str, asyncio.Lock] = {}
        self._unregister_relay: Optional[Callable[[], None]] = None

        # Stats
        self.stats = {
            'connections': 0,
            'events_sent': 0,
            'send_errors': 0,
        }

        self._register_handlers()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _register_handlers(self):
        handlers = {
            'connect': self.on_connect,
            'disconnect': self.on_disconnect,
            'subscribe:newPools': self.on_subscribe_new_pools,
            'unsubscribe:newPools': self.on_unsubscribe_new_pools,
            'subscribe:price': self.on_subscribe_price,
            'unsubscribe:price': self.on_unsubscribe_price,
            'subscribe:trades': self.on_subscribe_trades,
            'unsubscribe:trades': self.on_unsubscribe_trades,
            'subscribe:trending': self.on_subscribe_trending,
            'unsubscribe:trending': self.on_unsubscribe_trending,
            'subscribe:chain': self.on_subscribe_chain,
            'unsubscribe:chain': self.on_unsubscribe_chain,
        }
        for event, handler in handlers.items():
            self.sio.on(event, handler)

    def start(self):
        """Relay detector discoveries and start the three snapshot timers."""
        if self._unregister_relay is None:
            self._unregister_relay = self.detector.on_new_pool(self.relay_new_pool)

        self.scheduler.schedule(TRENDING_TASK, self.config.get('trending_interval_seconds', 30),
                                self.broadcast_trending)
        self.scheduler.schedule(PRICE_TASK, self.config.get('price_interval_seconds', 10),
                                self.broadcast_prices)
        self.scheduler.schedule(STATS_TASK, self.config.get('stats_interval_seconds', 60),
                                self.broadcast_stats)
        logger.info("[FANOUT] Broadcaster started")

    def stop(self):
        if self._unregister_relay is not None:
            self._unregister_relay()
            self._unregister_relay = None
        self.scheduler.cancel([TRENDING_TASK, PRICE_TASK, STATS_TASK])

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _lock_for(self, sid: str) -> asyncio.Lock:
        lock = self._send_locks.get(sid)
        if lock is None:
            lock = self._send_locks[sid] = asyncio.Lock()
        return lock

    async def _send(self, sid: str, event: str, data: Any):
        try:
            async with self._lock_for(sid):
                await self.sio.emit(event, data, to=sid)
            self.stats['events_sent'] += 1
        except Exception as e:
            self.stats['send_errors'] += 1
            logger.warning(f"[FANOUT] Failed to send {event} to {sid}: {e}")

    async def _publish(self, event: str, data: Any, topics: Iterable[str]) -> int:
        """Send to the union of the topics' members. Returns the recipient count."""
        recipients = self.topics.members(*topics)
        for sid in sorted(recipients):
            await self._send(sid, event, data)
        return len(recipients)

    # ------------------------------------------------------------------
    # Connection handlers
    # ------------------------------------------------------------------

    async def on_connect(self, sid, environ=None, auth=None):
        self.stats['connections'] += 1
        logger.info(f"[FANOUT] Client connected: {sid}")

    async def on_disconnect(self, sid, reason=None):
        self.topics.leave_all(sid)
        self._send_locks.pop(sid, None)
        logger.info(f"[FANOUT] Client disconnected: {sid}")

    async def on_subscribe_new_pools(self, sid, chain=None):
        chain = chain or None
        # Snapshot and join under the connection's send lock so no newPool
        # reaches this connection before its recentPools.
        async with self._lock_for(sid):
            recent = self.detector.get_recent_discoveries(self.snapshot_limit, chain)
            self.topics.join(sid, new_pools_topic(chain))
            try:
                await self.sio.emit('recentPools', recent, to=sid)
                self.stats['events_sent'] += 1
            except Exception as e:
                self.stats['send_errors'] += 1
                logger.warning(f"[FANOUT] Failed to send recentPools to {sid}: {e}")

        logger.info(f"[FANOUT] {sid} subscribed to {new_pools_topic(chain)} ({len(recent)} recent)")

    async def on_unsubscribe_new_pools(self, sid, chain=None):
        self.topics.leave(sid, new_pools_topic(chain or None))

    async def on_subscribe_price(self, sid, pair_ids=None):
        if not isinstance(pair_ids, list):
            return
        self.topics.join_many(sid, (price_topic(p) for p in pair_ids if p))
        logger.debug(f"[FANOUT] {sid} subscribed to {len(pair_ids)} price feeds")

    async def on_unsubscribe_price(self, sid, pair_ids=None):
        if not isinstance(pair_ids, list):
            return
        self.topics.leave_many(sid, (price_topic(p) for p in pair_ids if p))

    @staticmethod
    def _trades_key(payload) -> Optional[str]:
        if not isinstance(payload, dict):
            return None
        chain = payload.get('chain')
        pair_address = payload.get('pairAddress')
        if not chain or not pair_address:
            return None
        return trades_topic(chain, pair_address)

    async def on_subscribe_trades(self, sid, payload=None):
        topic = self._trades_key(payload)
        if topic:
            self.topics.join(sid, topic)

    async def on_unsubscribe_trades(self, sid, payload=None):
        topic = self._trades_key(payload)
        if topic:
            self.topics.leave(sid, topic)

    async def on_subscribe_trending(self, sid, *args):
        self.topics.join(sid, TRENDING)

    async def on_unsubscribe_trending(self, sid, *args):
        self.topics.leave(sid, TRENDING)

    async def on_subscribe_chain(self, sid, chain=None):
        if chain:
            self.topics.join(sid, chain_topic(chain))

    async def on_unsubscribe_chain(self, sid, chain=None):
        if chain:
            self.topics.leave(sid, chain_topic(chain))

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def relay_new_pool(self, pool: Dict):
        """Detector listener: one newPool per connection in newPools or newPools:<chain>."""
        await self._publish('newPool', pool, (NEW_POOLS, new_pools_topic(pool.get('chain'))))

    async def broadcast_trending(self):
        pools = await self.client.get_trending_pools(None, self.trending_limit)
        sent = await self._publish('trending:update', pools, (TRENDING,))
        logger.debug(f"[FANOUT] trending:update ({len(pools)} pools) -> {sent} clients")

    async def broadcast_prices(self):
        for chain in self.price_chains:
            try:
                await self._broadcast_chain_prices(chain)
            except Exception as e:
                logger.error(f"[FANOUT] Price broadcast failed for {chain}: {e}")

    async def _broadcast_chain_prices(self, chain: str):
        pools = await self.client.get_trending_pools(chain, self.price_pools_per_chain)
        timestamp = iso_timestamp(self._clock())

        for pool in pools:
            address = pool.get('address')
            if not address:
                continue
            update = {
                'pairId': address,
                'chain': chain,
                'price': pool.get('priceUSD'),
                'change24h': pool.get('priceChange24h'),
                'change1h': pool.get('priceChange1h'),
                'volume24h': pool.get('volume24h'),
                'liquidity': pool.get('liquidity'),
                'timestamp': timestamp,
            }
            await self._publish('price:update', update, (price_topic(address),))

        await self._publish('chainUpdate', {
            'chain': chain,
            'pools': pools[:self.chain_update_pools],
            'timestamp': timestamp,
        }, (chain_topic(chain),))

    async def broadcast_stats(self):
        await self._publish('detectorStats', self.detector.get_detector_stats(), (NEW_POOLS,))

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            'topics': self.topics.topic_counts(),
        }
