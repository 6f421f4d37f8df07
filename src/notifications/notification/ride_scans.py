"""Periodic ride scans — pickup reminders and delay detection.

Both scans read confirmed rides (progress status 100) from the ride store:

- Pickup reminders: rides whose requested pickup falls within the next
  ``reminder_lead`` get one reminder, scheduled ``reminder_lead`` before
  pickup (or immediately if that moment has passed).
- Delay detection: rides whose requested pickup passed more than
  ``delay_threshold`` ago and that have not started get one
  high-priority delay notice.

A ride that already has a live or sent notification of the same type is
skipped, so repeated scans do not notify twice.
"""

from datetime import UTC, datetime, timedelta

import structlog

from notifications.notification.helpers import NotificationProducer
from notifications.notification.notification import NotificationPriority, NotificationType
from notifications.preference.preference import RideUpdate
from rides.documents import RideDocument, RideDocumentStore
from rides.status import RideProgressStatus
from shared.periodic import PeriodicTask

logger = structlog.get_logger(__name__)


class RideScans:
    def __init__(
        self,
        rides: RideDocumentStore,
        producer: NotificationProducer,
        reminder_lead: timedelta = timedelta(minutes=15),
        delay_threshold: timedelta = timedelta(minutes=15),
        reminder_interval: float = 900.0,
        delay_interval: float = 300.0,
    ):
        self._rides = rides
        self._producer = producer
        self._queue = producer.queue
        self.reminder_lead = reminder_lead
        self.delay_threshold = delay_threshold
        self.tasks = [
            PeriodicTask("pickup-reminders", reminder_interval, self.send_pickup_reminders),
            PeriodicTask("delay-detection", delay_interval, self.detect_delays),
        ]

    def start(self) -> None:
        for task in self.tasks:
            task.start()

    async def stop(self) -> None:
        for task in self.tasks:
            await task.stop()

    async def _confirmed_rides(self) -> list[RideDocument]:
        return await self._rides.find_by_progress_status(RideProgressStatus.REQUEST_CONFIRMED.value)

    async def send_pickup_reminders(self) -> list[str]:
        now = self._queue.now()
        horizon = now + self.reminder_lead
        created = []

        for ride in await self._confirmed_rides():
            pickup = ride.pickup_requested_time
            if pickup is None or not (now <= pickup <= horizon):
                continue
            notification_type = NotificationType.PICKUP_REMINDER.value
            if await self._queue.exists_for(ride.uuid, notification_type):
                continue

            remind_at = max(pickup - self.reminder_lead, now)
            created += await self._producer.notify(
                recipient_id=ride.service_user_uuid,
                notification_type=notification_type,
                context={
                    "pickup_time": _clock_time(pickup),
                    "pickup_address": ride.pickup_address or "your pickup location",
                },
                correlation_id=ride.uuid,
                update=RideUpdate.PICKUP_REMINDER,
                scheduled_time=remind_at if remind_at > now else None,
            )

        if created:
            logger.info("Pickup reminders scheduled", count=len(created))
        return created

    async def detect_delays(self) -> list[str]:
        now = self._queue.now()
        created = []

        for ride in await self._confirmed_rides():
            pickup = ride.pickup_requested_time
            if pickup is None or ride.ride_started_actual_time is not None:
                continue
            delay = now - pickup
            if delay <= self.delay_threshold:
                continue
            notification_type = NotificationType.DELAY_NOTICE.value
            if await self._queue.exists_for(ride.uuid, notification_type):
                continue

            delay_minutes = int(delay.total_seconds() // 60)
            logger.warning("Ride delay detected", ride_id=ride.uuid, delay_minutes=delay_minutes)
            created += await self._producer.notify(
                recipient_id=ride.service_user_uuid,
                notification_type=notification_type,
                context={"delay_minutes": delay_minutes, "reason": "Driver running late"},
                correlation_id=ride.uuid,
                priority=NotificationPriority.HIGH,
                update=RideUpdate.DELAYS,
            )

        return created


def _clock_time(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%H:%M UTC")
