"""
TASK SCHEDULER

Lifecycle manager for every periodic job in the process:
- detector poll (15s) and seen-set sweep (1h)
- broadcaster trending (30s), price (10s) and stats (60s) snapshots

One timer per concern, each an asyncio task. A failing tick is logged and
the timer keeps its schedule (no backoff). `shutdown()` cancels and awaits
all tasks so teardown is deterministic.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class TaskScheduler:
    """
    Owns named periodic asyncio tasks.

    Usage:
        scheduler = TaskScheduler()
        scheduler.schedule('detector-poll', 15, detector.tick, run_immediately=True)
        ...
        await scheduler.shutdown()
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

        # Stats
        self.runs: Dict[str, int] = {}
        self.failures: Dict[str, int] = {}
        self.last_run_time: Dict[str, Optional[float]] = {}

    def schedule(self, name: str, interval_seconds: float, callback: TickCallback,
                 run_immediately: bool = False) -> asyncio.Task:
        """
        Start a periodic task. Must be called from a running event loop.

        Args:
            name: Unique task name
            interval_seconds: Delay between the end of one tick and the next
            callback: Async function run on every tick
            run_immediately: Tick once before the first sleep

        Returns:
            The created asyncio.Task
        """
        if name in self._tasks and not self._tasks[name].done():
            raise RuntimeError(f"Task '{name}' is already scheduled")

        self.runs.setdefault(name, 0)
        self.failures.setdefault(name, 0)
        self.last_run_time.setdefault(name, None)

        task = asyncio.create_task(
            self._run_periodic(name, interval_seconds, callback, run_immediately),
            name=name,
        )
        self._tasks[name] = task
        logger.info(f"[SCHEDULER] {name} started (every {interval_seconds}s)")
        return task

    async def _run_periodic(self, name: str, interval_seconds: float,
                            callback: TickCallback, run_immediately: bool):
        if not run_immediately:
            await asyncio.sleep(interval_seconds)

        while True:
            await self._run_once(name, callback)
            await asyncio.sleep(interval_seconds)

    async def _run_once(self, name: str, callback: TickCallback):
        self.last_run_time[name] = time.time()
        try:
            await callback()
            self.runs[name] += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures[name] += 1
            logger.exception(f"[SCHEDULER] {name} tick failed: {e}")

    def cancel(self, names: Iterable[str]):
        """Cancel the given tasks without waiting for them."""
        for name in names:
            task = self._tasks.pop(name, None)
            if task and not task.done():
                task.cancel()
                logger.info(f"[SCHEDULER] {name} cancelled")

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    async def shutdown(self):
        """Cancel every task and wait for them to finish."""
        tasks = list(self._tasks.values())
        names = list(self._tasks)
        self._tasks.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(f"[SCHEDULER] Shutdown complete ({len(names)} tasks: {', '.join(names)})")

    def get_stats(self) -> Dict:
        return {
            'tasks': sorted(name for name in self._tasks if self.is_running(name)),
            'runs': dict(self.runs),
            'failures': dict(self.failures),
            'last_run_time': dict(self.last_run_time),
        }
