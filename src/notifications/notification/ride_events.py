"""Inbound cross-context event handler — Notifications reacts to ride events.

Each handler method turns one ride event into rider and/or driver
notifications. Registered on an EventBus with ``register``.
"""

import structlog

from notifications.notification.helpers import NotificationProducer
from notifications.notification.notification import (
    NotificationChannel,
    NotificationPriority,
    NotificationType,
)
from notifications.preference.preference import RideUpdate
from notifications.templates import get_template
from shared.bus import EventBus
from shared.events.rides import DomainEvent, RideEventKind

logger = structlog.get_logger(__name__)


class RideEventsHandler:
    """Produces notifications for ride lifecycle events."""

    def __init__(self, producer: NotificationProducer):
        self.producer = producer
        self.queue = producer.queue

    def register(self, bus: EventBus) -> None:
        routes = {
            RideEventKind.REQUEST_CREATED: self.on_request_created,
            RideEventKind.REQUEST_CONFIRMED: self.on_request_confirmed,
            RideEventKind.DRIVER_ASSIGNED: self.on_driver_assigned,
            RideEventKind.VEHICLE_ASSIGNED: self.on_vehicle_assigned,
            RideEventKind.RIDE_STARTED: self.on_ride_started,
            RideEventKind.RIDE_INTERRUPTED: self.on_ride_interrupted,
            RideEventKind.RIDER_PICKED_UP: self.on_rider_picked_up,
            RideEventKind.RIDER_DROPPED_OFF: self.on_rider_dropped_off,
            RideEventKind.ROUNDTRIP_RETURNING: self.on_roundtrip_returning,
            RideEventKind.ROUNDTRIP_COMPLETE: self.on_roundtrip_complete,
            RideEventKind.RIDE_COMPLETE: self.on_ride_complete,
            RideEventKind.REQUEST_CANCELED: self.on_request_canceled,
            RideEventKind.EMERGENCY_ALERT: self.on_emergency_alert,
        }
        for kind, handler in routes.items():
            bus.subscribe(kind, handler)

    async def _status_update(self, event, status, update, priority=NotificationPriority.MEDIUM):
        return await self.producer.notify(
            recipient_id=event.subject_id,
            notification_type=NotificationType.RIDE_STATUS_UPDATE.value,
            context={"status": status, "ride_id": event.correlation_id},
            correlation_id=event.correlation_id,
            priority=priority,
            update=update,
            event=event,
        )

    async def on_request_created(self, event: DomainEvent):
        return await self.producer.notify(
            recipient_id=event.subject_id,
            notification_type=NotificationType.REQUEST_RECEIVED.value,
            context=dict(event.attributes),
            correlation_id=event.correlation_id,
            update=RideUpdate.REQUEST_CONFIRMATION,
            event=event,
        )

    async def on_request_confirmed(self, event: DomainEvent):
        return await self._status_update(event, "confirmed", RideUpdate.REQUEST_CONFIRMATION)

    async def on_driver_assigned(self, event: DomainEvent):
        ids = await self.producer.notify(
            recipient_id=event.subject_id,
            notification_type=NotificationType.DRIVER_ASSIGNED.value,
            context=dict(event.attributes),
            correlation_id=event.correlation_id,
            update=RideUpdate.DRIVER_ASSIGNED,
            event=event,
        )

        driver_id = event.attribute("driver_id")
        if driver_id:
            ids += await self.producer.notify(
                recipient_id=driver_id,
                notification_type=NotificationType.NEW_RIDE_ASSIGNMENT.value,
                context=dict(event.attributes),
                correlation_id=event.correlation_id,
                priority=NotificationPriority.HIGH,
                event=event,
            )
        return ids

    async def on_vehicle_assigned(self, event: DomainEvent):
        driver_id = event.attribute("driver_id")
        if not driver_id:
            logger.info("Vehicle assigned before a driver, nobody to notify", ride_id=event.correlation_id)
            return []
        return await self.producer.notify(
            recipient_id=driver_id,
            notification_type=NotificationType.VEHICLE_ASSIGNED.value,
            context=dict(event.attributes),
            correlation_id=event.correlation_id,
            event=event,
        )

    async def on_ride_started(self, event: DomainEvent):
        return await self._status_update(event, "ride_started", RideUpdate.RIDE_START)

    async def on_ride_interrupted(self, event: DomainEvent):
        return await self._status_update(event, "interrupted", None, NotificationPriority.HIGH)

    async def on_rider_picked_up(self, event: DomainEvent):
        return await self._status_update(event, "pickup_complete", RideUpdate.RIDE_START)

    async def on_rider_dropped_off(self, event: DomainEvent):
        return await self._status_update(event, "dropoff_complete", RideUpdate.RIDE_COMPLETE)

    async def on_ride_complete(self, event: DomainEvent):
        return await self._status_update(event, "completed", RideUpdate.RIDE_COMPLETE)

    async def _roundtrip_update(self, event: DomainEvent, stage: str):
        return await self.producer.notify(
            recipient_id=event.subject_id,
            notification_type=NotificationType.ROUNDTRIP_UPDATE.value,
            context={"stage": stage},
            correlation_id=event.correlation_id,
            update=RideUpdate.ROUNDTRIP_UPDATES,
            event=event,
        )

    async def on_roundtrip_returning(self, event: DomainEvent):
        return await self._roundtrip_update(event, "returning")

    async def on_roundtrip_complete(self, event: DomainEvent):
        return await self._roundtrip_update(event, "complete")

    async def on_request_canceled(self, event: DomainEvent):
        """Cancel everything still queued for the ride, then tell the rider."""
        reason = event.attribute("reason")
        await self.queue.cancel_by_correlation(event.correlation_id, reason=f"Ride cancelled: {reason or 'upstream'}")
        return await self.producer.notify(
            recipient_id=event.subject_id,
            notification_type=NotificationType.RIDE_CANCELLATION.value,
            context={"reason": reason},
            correlation_id=event.correlation_id,
            priority=NotificationPriority.HIGH,
            update=RideUpdate.CANCELLATIONS,
            event=event,
        )

    async def on_emergency_alert(self, event: DomainEvent):
        """Urgent message to the rider and their primary emergency contact."""
        message = event.attribute("message", "Emergency alert for your ride.")
        ids = await self.producer.notify(
            recipient_id=event.subject_id,
            notification_type=NotificationType.EMERGENCY_ALERT.value,
            context={"message": message},
            correlation_id=event.correlation_id,
            priority=NotificationPriority.URGENT,
            event=event,
            bypass_preferences=True,
        )

        prefs = await self.producer.preferences.get(event.subject_id)
        contact = prefs.primary_emergency_contact() if prefs else None
        if contact is None:
            return ids

        template_cls = get_template(NotificationType.EMERGENCY_CONTACT_ALERT.value)
        rendered = template_cls.render({"relationship": contact.relationship, "message": message})
        ids.append(
            await self.queue.enqueue(
                channel=NotificationChannel.SMS,
                recipient=contact.phone_number,
                message_body=rendered["body"],
                priority=NotificationPriority.URGENT,
                metadata={
                    "correlation_id": event.correlation_id,
                    "notification_type": template_cls.notification_type,
                    "recipient_id": event.subject_id,
                    "contact_name": contact.name,
                    "subject": rendered["subject"],
                    "event_kind": event.kind.value,
                    "retry_history": [],
                },
            )
        )
        logger.warning("Emergency contact alerted", ride_id=event.correlation_id, contact=contact.name)
        return ids
