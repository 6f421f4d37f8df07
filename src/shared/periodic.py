"""Timer-driven periodic tasks with a non-reentrant guard.

Each tick is started on its own timer, independent of how long the
previous tick took. If the previous tick is still running the new one is
skipped, so a slow tick never overlaps itself.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[object]]):
        self.name = name
        self.interval = interval
        self._func = func
        self._in_progress = False
        self._loop_task: asyncio.Task | None = None
        self._tick_tasks: set[asyncio.Task] = set()
        self.runs = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    async def run_once(self) -> bool:
        """Run one tick unless a tick is already in progress.

        Returns:
            False if the tick was skipped.
        """
        if self._in_progress:
            self.skipped += 1
            logger.warning("Periodic task still running, skipping tick", task=self.name)
            return False

        self._in_progress = True
        try:
            await self._func()
            self.runs += 1
        except Exception:
            logger.exception("Periodic task failed", task=self.name)
        finally:
            self._in_progress = False
        return True

    def start(self) -> None:
        """Start the timer loop (no-op if already running)."""
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("Periodic task started", task=self.name, interval=self.interval)

    async def _loop(self) -> None:
        while True:
            tick = asyncio.create_task(self.run_once(), name=f"tick:{self.name}")
            self._tick_tasks.add(tick)
            tick.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        """Stop the timer and wait for an in-progress tick to finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)
        logger.info("Periodic task stopped", task=self.name, runs=self.runs, skipped=self.skipped)
