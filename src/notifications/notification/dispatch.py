"""Dispatch worker pool — claims due notifications and sends them.

Every tick (one second by default):

1. Items stuck in PROCESSING longer than the staleness threshold go
   through the failure path, which consumes a retry.
2. Up to ``concurrency_limit - in_flight`` eligible items are claimed and
   handed to the sender as background tasks.
3. Each send resolves to ``mark_sent`` or ``mark_failed`` and frees its
   slot when it finishes.

Sends already in flight are never preempted. The tick runs under a
non-reentrant guard, so claims are only ever made by one tick at a time.
"""

import asyncio
from datetime import timedelta

import structlog

from notifications.notification.notification import NotificationItem
from notifications.notification.queue import NotificationQueue
from shared.errors import TerminalSendFailure, TransientSendFailure
from shared.periodic import PeriodicTask

logger = structlog.get_logger(__name__)


class DispatchWorkerPool:
    def __init__(
        self,
        queue: NotificationQueue,
        sender,
        concurrency_limit: int = 5,
        tick_interval: float = 1.0,
        stale_after: float = 30.0,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self._queue = queue
        self._sender = sender
        self.concurrency_limit = concurrency_limit
        self.stale_after = timedelta(seconds=stale_after)
        # Keyed by task: another dispatcher may requeue and reclaim an item this pool is still sending
        self._in_flight: dict[asyncio.Task, str] = {}
        self._task = PeriodicTask("dispatch", tick_interval, self.tick)
        self.peak_in_flight = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def running(self) -> bool:
        return self._task.running

    def ensure_running(self) -> bool:
        """Start the tick loop if it is idle.

        Returns:
            False when there is no running event loop to start it on.
        """
        if self._task.running:
            return True
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dispatch loop not started")
            return False
        self._task.start()
        return True

    start = ensure_running

    async def stop(self, drain: bool = True) -> None:
        """Stop ticking; optionally wait for in-flight sends to resolve."""
        await self._task.stop()
        if drain:
            await self.drain()
        else:
            for task in list(self._in_flight):
                task.cancel()

    async def drain(self) -> None:
        """Wait until every in-flight send has resolved."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # -------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------
    async def tick(self) -> list[str]:
        await self.sweep_stale()
        return await self.dispatch_available()

    async def sweep_stale(self) -> int:
        """Fail items whose claim is older than the staleness threshold.

        Items this pool is still sending are left to their own send.
        """
        stale = await self._queue.list_stale(self.stale_after)
        sending = set(self._in_flight.values())
        failed = 0
        for item in stale:
            if item.id in sending:
                logger.warning("Slow send past staleness threshold", notification_id=item.id)
                continue
            if await self._queue.mark_failed(
                item.id,
                f"Stale claim: processing for more than {int(self.stale_after.total_seconds())}s",
                source="stale",
            ):
                failed += 1
        if failed:
            logger.warning("Stale claims failed", count=failed)
        return failed

    async def dispatch_available(self) -> list[str]:
        """Claim as many eligible items as there are free slots and start sending them."""
        capacity = self.concurrency_limit - self.in_flight
        if capacity <= 0:
            return []

        claimed = []
        for item in await self._queue.list_eligible(capacity):
            if self.in_flight >= self.concurrency_limit:
                break
            if not await self._queue.claim(item.id):
                continue
            task = asyncio.create_task(self._send(item), name=f"send:{item.id}")
            self._in_flight[task] = item.id
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            claimed.append(item.id)

        if claimed:
            logger.debug("Notifications claimed", count=len(claimed), in_flight=self.in_flight)
        return claimed

    async def _send(self, item: NotificationItem) -> None:
        try:
            try:
                result = await self._sender.send(item)
            except TerminalSendFailure as exc:
                await self._queue.mark_failed(item.id, str(exc), retryable=False)
            except TransientSendFailure as exc:
                logger.warning("Transient send failure", notification_id=item.id, error=str(exc))
                await self._queue.mark_failed(item.id, str(exc))
            except Exception as exc:
                logger.error("Notification dispatch failed", notification_id=item.id, error=str(exc))
                await self._queue.mark_failed(item.id, str(exc) or type(exc).__name__)
            else:
                if result.get("status") == "sent":
                    await self._queue.mark_sent(item.id, result.get("message_id"))
                else:
                    await self._queue.mark_failed(
                        item.id,
                        result.get("error") or "Unknown dispatch error",
                        retryable=result.get("retryable", True),
                    )
        except Exception:
            logger.exception("Failed to resolve send outcome", notification_id=item.id)
        finally:
            self._in_flight.pop(asyncio.current_task(), None)
