"""ChannelSender — sends a NotificationItem through its channel adapter."""

import structlog

from notifications.channel import get_channel
from notifications.notification.notification import NotificationChannel, NotificationItem
from shared.errors import TransientSendFailure

logger = structlog.get_logger(__name__)


class ChannelSender:
    """External sender used by the dispatch worker pool.

    ``send`` returns the adapter result: ``status`` is "sent" with the
    provider's ``message_id``, or "failed" with ``error`` and ``retryable``.
    Connection and timeout errors raised by an adapter surface as
    ``TransientSendFailure``; any other exception propagates unchanged.
    """

    def __init__(self, channels=get_channel):
        self._channels = channels

    async def send(self, item: NotificationItem) -> dict:
        adapter = self._channels(item.channel.value)
        try:
            result = await _dispatch_via_channel(adapter, item)
        except (ConnectionError, TimeoutError) as exc:
            raise TransientSendFailure(str(exc) or type(exc).__name__) from exc
        logger.debug(
            "Channel send finished",
            notification_id=item.id,
            channel=item.channel.value,
            status=result.get("status"),
        )
        return result


async def _dispatch_via_channel(adapter, item: NotificationItem) -> dict:
    """Route dispatch to the correct adapter method based on channel."""
    subject = item.metadata.get("subject") or ""

    if item.channel == NotificationChannel.SMS:
        return await adapter.send(to=item.recipient, body=item.message_body)
    elif item.channel == NotificationChannel.EMAIL:
        return await adapter.send(to=item.recipient, subject=subject, body=item.message_body)
    elif item.channel == NotificationChannel.PUSH:
        return await adapter.send(device_token=item.recipient, title=subject, body=item.message_body)
    else:
        return {"status": "failed", "error": f"Unknown channel: {item.channel}", "retryable": False}
