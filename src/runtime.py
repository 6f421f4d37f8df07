"""Composition root — builds and wires every ridestream component.

    change feed → ChangeEventSource → EventBus → RideEventsHandler
                                              → RideEventLog
    RideEventsHandler / RideScans → NotificationQueue ← DispatchWorkerPool → ChannelSender
    delivery receipts → DeliveryReconciler → NotificationQueue

The change feed and ride store default to the in-memory implementations;
a deployment passes adapters for its datastore instead.
"""

from dataclasses import dataclass, field
from datetime import timedelta

import structlog
from notifications.channel.sender import ChannelSender
from notifications.notification.dispatch import DispatchWorkerPool
from notifications.notification.helpers import NotificationProducer
from notifications.notification.notification import RetryPolicy
from notifications.notification.queue import NotificationQueue, utc_now
from notifications.notification.reconciler import DeliveryReconciler
from notifications.notification.ride_events import RideEventsHandler
from notifications.notification.ride_scans import RideScans
from notifications.preference.preference import InMemoryPreferenceStore, PreferenceStore
from notifications.projections.delivery_stats import DeliveryStatsProjection
from rides.change_feed import ChangeFeed, InMemoryChangeFeed
from rides.detection import ChangeEventSource
from rides.documents import InMemoryRideStore, RideDocumentStore
from rides.projections.ride_event_log import RideEventLog
from rides.resume_tokens import ResumeTokenStore
from shared.bus import EventBus
from shared.settings import Settings, get_settings
from shared.utils.db import create_engine, get_session_factory, setup_db
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    bus: EventBus
    feed: ChangeFeed
    rides: RideDocumentStore
    preferences: PreferenceStore
    queue: NotificationQueue
    sender: ChannelSender
    pool: DispatchWorkerPool
    reconciler: DeliveryReconciler
    delivery_stats: DeliveryStatsProjection
    event_log: RideEventLog
    source: ChangeEventSource
    scans: RideScans
    started: bool = field(default=False)

    async def setup(self) -> None:
        await setup_db(self.engine)

    async def start(self, scans: bool = True) -> None:
        """Start change detection, the dispatch loop and (optionally) the ride scans."""
        self.source.start()
        self.pool.ensure_running()
        if scans:
            self.scans.start()
        self.started = True
        logger.info("Runtime started", scans=scans)

    async def stop(self) -> None:
        await self.source.stop()
        await self.scans.stop()
        await self.pool.stop(drain=True)
        await self.engine.dispose()
        self.started = False
        logger.info("Runtime stopped")


def build_runtime(
    settings: Settings | None = None,
    feed: ChangeFeed | None = None,
    rides: RideDocumentStore | None = None,
    preferences: PreferenceStore | None = None,
    sender: ChannelSender | None = None,
    clock=utc_now,
) -> Runtime:
    settings = settings or get_settings()
    engine = create_engine(settings)
    session_factory = get_session_factory(engine)

    if feed is None:
        feed = InMemoryChangeFeed()
    if rides is None:
        rides = InMemoryRideStore(feed if isinstance(feed, InMemoryChangeFeed) else None)
    preferences = preferences or InMemoryPreferenceStore()
    sender = sender or ChannelSender()

    bus = EventBus()
    policy = RetryPolicy(
        backoff=tuple(settings.retry_backoff_seconds),
        cap=settings.retry_cap_seconds,
        max_retries=settings.max_retries,
    )
    queue = NotificationQueue(session_factory, policy=policy, clock=clock)
    pool = DispatchWorkerPool(
        queue,
        sender,
        concurrency_limit=settings.dispatch_concurrency,
        tick_interval=settings.dispatch_tick_seconds,
        stale_after=settings.stale_claim_seconds,
    )
    queue.attach_dispatcher(pool)

    delivery_stats = DeliveryStatsProjection(session_factory)
    reconciler = DeliveryReconciler(queue, settings.retryable_error_codes, stats=delivery_stats)

    producer = NotificationProducer(queue, preferences)
    RideEventsHandler(producer).register(bus)
    event_log = RideEventLog(session_factory)
    event_log.register(bus)

    source = ChangeEventSource(
        feed,
        rides,
        bus,
        tokens=ResumeTokenStore(session_factory),
        reconnect_initial=settings.feed_reconnect_initial_seconds,
        reconnect_max=settings.feed_reconnect_max_seconds,
        reconnect_attempts=settings.feed_reconnect_attempts,
    )
    scans = RideScans(
        rides,
        producer,
        reminder_lead=timedelta(minutes=settings.reminder_lead_minutes),
        delay_threshold=timedelta(minutes=settings.delay_threshold_minutes),
        reminder_interval=settings.reminder_scan_seconds,
        delay_interval=settings.delay_scan_seconds,
    )

    return Runtime(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        bus=bus,
        feed=feed,
        rides=rides,
        preferences=preferences,
        queue=queue,
        sender=sender,
        pool=pool,
        reconciler=reconciler,
        delivery_stats=delivery_stats,
        event_log=event_log,
        source=source,
        scans=scans,
    )
