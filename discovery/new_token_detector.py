"""
NEW TOKEN DETECTOR

Polls the market data client for new pools on every configured chain and
reports each pool ONCE, the first time it is seen and passes the filters.

PIPELINE (per tick, chains processed sequentially in list order):
  get_new_pools(chain, 50)
          ↓
  already seen?          -> skip
  liquidity < min?       -> skip
  age > max?             -> skip
          ↓
  snipe score attached
          ↓
  seen-set insert (atomic check-and-insert)
          ↓
  listeners notified (each in its own error trap)

A failing chain or listener is logged and never stops the tick; a failing
tick is logged and never stops the timer.
"""

import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from market_data.snipe_score import calculate_snipe_score

from .filters import DiscoveryFilter
from .scheduler import TaskScheduler
from .seen_pools import SeenPoolStore, iso_timestamp

logger = logging.getLogger(__name__)

POLL_TASK = 'detector-poll'
SWEEP_TASK = 'detector-sweep'

DEFAULT_CHAINS = ['ethereum', 'bsc', 'solana', 'base', 'arbitrum']

_PROCESS_STARTED_AT = time.monotonic()

NewPoolListener = Callable[[Dict], Any]


class NewTokenDetector:
    """
    New pool discovery tracker.

    Usage:
        detector = NewTokenDetector(client, config['detector'], chains=config['chains'],
                                    scheduler=scheduler)
        unregister = detector.on_new_pool(handle_pool)
        stop = detector.start()
        ...
        stop()
    """

    def __init__(self, client, config: Dict = None, chains: List[str] = None,
                 scheduler: Optional[TaskScheduler] = None,
                 store: Optional[SeenPoolStore] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            client: GeckoTerminalAPI (anything with async get_new_pools(chain, limit))
            config: `detector` config section
            chains: Chains to poll
            scheduler: Lifecycle manager for the poll/sweep tasks
            store: Seen-set (built from config when omitted)
            clock: Returns current time in seconds
        """
        self.client = client
        self.config = config or {}
        self._clock = clock

        self.chains = list(chains or DEFAULT_CHAINS)
        self.poll_interval_ms = self.config.get('poll_interval_ms', 15000)
        self.fetch_limit = self.config.get('fetch_limit', 50)
        self.sweep_interval_seconds = self.config.get('sweep_interval_seconds', 60 * 60)

        self.filter = DiscoveryFilter(
            min_liquidity_usd=self.config.get('min_liquidity_usd', 1000),
            max_age_seconds=self.config.get('max_age_seconds', 3600),
        )
        self.store = store or SeenPoolStore(
            retention_seconds=self.config.get('retention_seconds', 24 * 60 * 60),
            chain_scoped_keys=self.config.get('chain_scoped_keys', False),
            clock=clock,
        )
        self.scheduler = scheduler or TaskScheduler()

        self._listeners: List[NewPoolListener] = []
        self._running = False

        # Stats
        self.stats = {
            'ticks': 0,
            'pools_seen': 0,
            'duplicates': 0,
            'filtered_out': 0,
            'discovered': 0,
            'listener_errors': 0,
            'chain_errors': 0,
        }

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_new_pool(self, callback: NewPoolListener) -> Callable[[], None]:
        """
        Register a discovery listener (plain or async callable).

        Returns:
            Function that unregisters the listener
        """
        self._listeners.append(callback)

        def unregister():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    async def _emit(self, event: Dict):
        for callback in list(self._listeners):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.stats['listener_errors'] += 1
                logger.exception(f"[DETECTOR] Error in new pool listener: {e}")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def tick(self) -> List[Dict]:
        """
        Run one poll over all chains.

        Returns:
            The discovery events emitted during this tick
        """
        self.stats['ticks'] += 1
        emitted: List[Dict] = []

        for chain in self.chains:
            try:
                emitted.extend(await self._check_chain(chain))
            except Exception as e:
                self.stats['chain_errors'] += 1
                logger.error(f"[DETECTOR] Error checking {chain} for new pools: {e}")

        return emitted

    async def _check_chain(self, chain: str) -> List[Dict]:
        pools = await self.client.get_new_pools(chain, self.fetch_limit)
        if not pools:
            return []

        emitted = []
        for pool in pools:
            self.stats['pools_seen'] += 1

            if self.store.contains(pool):
                self.stats['duplicates'] += 1
                continue

            passed, reason = self.filter.apply(pool)
            if not passed:
                self.stats['filtered_out'] += 1
                logger.debug(f"[DETECTOR] {str(pool.get('address'))[:10]}... dropped: {reason}")
                continue

            scored = {**pool, 'snipeScore': calculate_snipe_score(pool)}

            now = self._clock()
            if not self.store.add_if_absent(scored, discovered_at=now):
                self.stats['duplicates'] += 1
                continue

            event = {**scored, 'isNew': True, 'discoveredAt': iso_timestamp(now)}
            self.stats['discovered'] += 1

            base = (pool.get('baseToken') or {}).get('symbol')
            quote = (pool.get('quoteToken') or {}).get('symbol')
            logger.info(
                f"[DETECTOR] New pool detected: {base}/{quote} on {pool.get('chain')} "
                f"(Score: {scored['snipeScore']})"
            )

            await self._emit(event)
            emitted.append(event)

        return emitted

    async def _sweep_tick(self):
        self.sweep()

    def sweep(self) -> int:
        """Purge seen-set entries older than the retention window."""
        cleaned = self.store.purge_expired()
        if cleaned > 0:
            logger.info(f"[DETECTOR] Cleaned up {cleaned} old pool entries")
        return cleaned

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, options: Dict = None) -> Callable[[], None]:
        """
        Tick immediately, then poll every poll_interval_ms and sweep hourly.
        Must be called from a running event loop.

        Args:
            options: Optional overrides - chains, poll_interval_ms,
                     min_liquidity_usd, max_age_seconds

        Returns:
            Stop function cancelling both timers
        """
        if self._running:
            raise RuntimeError("New token detector is already running")

        options = options or {}
        if options.get('chains'):
            self.chains = list(options['chains'])
        self.poll_interval_ms = options.get('poll_interval_ms', self.poll_interval_ms)
        self.filter.min_liquidity_usd = options.get('min_liquidity_usd', self.filter.min_liquidity_usd)
        self.filter.max_age_seconds = options.get('max_age_seconds', self.filter.max_age_seconds)

        logger.info("[DETECTOR] Starting new token detector...")
        logger.info(f"[DETECTOR]    Chains: {', '.join(self.chains)}")
        logger.info(f"[DETECTOR]    Poll interval: {self.poll_interval_ms}ms")
        logger.info(f"[DETECTOR]    Min liquidity: ${self.filter.min_liquidity_usd}")
        logger.info(f"[DETECTOR]    Max age: {self.filter.max_age_seconds}s")

        self.scheduler.schedule(POLL_TASK, self.poll_interval_ms / 1000.0, self.tick,
                                run_immediately=True)
        self.scheduler.schedule(SWEEP_TASK, self.sweep_interval_seconds, self._sweep_tick)
        self._running = True

        return self.stop

    def stop(self):
        """Cancel the poll and sweep timers."""
        if not self._running:
            return
        self.scheduler.cancel([POLL_TASK, SWEEP_TASK])
        self._running = False
        logger.info("[DETECTOR] New token detector stopped")

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recent_discoveries(self, limit: int = 50, chain: Optional[str] = None) -> List[Dict]:
        """Recent discoveries, newest first, optionally filtered by chain."""
        return self.store.recent(limit, chain)

    def get_detector_stats(self) -> Dict:
        """Tracked count, per-chain histogram, mean snipe score, process uptime."""
        stats = self.store.stats()
        stats['uptime'] = time.monotonic() - _PROCESS_STARTED_AT
        return stats
