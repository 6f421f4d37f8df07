"""Shared helper for notification producers.

Provides the common pattern: look up preferences → filter channels →
render template → enqueue one item per channel.
"""

from datetime import datetime

import structlog

from notifications.notification.notification import NotificationChannel, NotificationPriority
from notifications.notification.queue import NotificationQueue
from notifications.preference.preference import PreferenceStore, RideUpdate
from notifications.templates import get_template
from shared.events.rides import DomainEvent

logger = structlog.get_logger(__name__)


class NotificationProducer:
    def __init__(self, queue: NotificationQueue, preferences: PreferenceStore):
        self.queue = queue
        self.preferences = preferences

    async def notify(
        self,
        recipient_id: str,
        notification_type: str,
        context: dict,
        correlation_id: str | None = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        update: RideUpdate | None = None,
        event: DomainEvent | None = None,
        scheduled_time: datetime | None = None,
        bypass_preferences: bool = False,
    ) -> list[str]:
        """Enqueue notification(s) for one recipient based on their preferences.

        Recipients without stored preferences get SMS addressed to their
        id. ``bypass_preferences`` (emergencies) ignores opt-outs and
        channel toggles but still uses the stored phone number.

        Returns:
            List of notification ids enqueued.
        """
        template_cls = get_template(notification_type)
        rendered = template_cls.render(context)
        prefs = await self.preferences.get(recipient_id)

        if prefs is None:
            targets = [(NotificationChannel.SMS.value, recipient_id)]
        elif bypass_preferences:
            targets = [
                (channel, prefs.address_for(channel) or recipient_id)
                for channel in template_cls.default_channels
                if channel == NotificationChannel.SMS.value
            ]
        else:
            if not prefs.wants(update):
                logger.info(
                    "Recipient opted out of ride update",
                    recipient_id=recipient_id,
                    notification_type=notification_type,
                    update=update.value if update else None,
                )
                return []
            enabled = set(prefs.enabled_channels())
            targets = [
                (channel, prefs.address_for(channel))
                for channel in template_cls.default_channels
                if channel in enabled
            ]

        if not targets:
            logger.info(
                "No enabled channels for notification",
                recipient_id=recipient_id,
                notification_type=notification_type,
            )
            return []

        notification_ids = []
        for channel, address in targets:
            metadata = {
                "correlation_id": correlation_id,
                "notification_type": notification_type,
                "recipient_id": recipient_id,
                "subject": rendered.get("subject"),
                "template_name": template_cls.__name__,
                "event_kind": event.kind.value if event else None,
                "retry_history": [],
            }
            notification_ids.append(
                await self.queue.enqueue(
                    channel=channel,
                    recipient=address,
                    message_body=rendered["body"],
                    priority=priority,
                    metadata=metadata,
                    scheduled_time=scheduled_time,
                    idempotency_key=_idempotency_key(event, notification_type, recipient_id, channel),
                )
            )

        logger.info(
            "Notifications created",
            recipient_id=recipient_id,
            notification_type=notification_type,
            channels=[channel for channel, _ in targets],
            count=len(notification_ids),
        )
        return notification_ids


def _idempotency_key(event: DomainEvent | None, notification_type: str, recipient_id: str, channel: str) -> str | None:
    """Key tying a notification to the feed change that caused it.

    A change replayed after a reconnect yields the same key, so the
    notification is not enqueued twice. Events without a change id (API
    raised) are never deduplicated.
    """
    change_id = event.attribute("change_id") if event else None
    if change_id is None:
        return None
    return f"{event.kind.value}:{change_id}:{notification_type}:{recipient_id}:{channel}"
