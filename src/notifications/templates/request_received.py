"""Request received template — sent when a new ride request is detected."""

from notifications.notification.notification import NotificationChannel, NotificationType


class RequestReceivedTemplate:
    notification_type = NotificationType.REQUEST_RECEIVED.value
    default_channels = [
        NotificationChannel.SMS.value,
        NotificationChannel.EMAIL.value,
        NotificationChannel.PUSH.value,
    ]

    @staticmethod
    def render(context: dict) -> dict:
        body = "Your ride request has been received and is being processed."
        pickup_time = context.get("pickup_time")
        if pickup_time:
            body = f"{body} Requested pickup: {pickup_time}."
        return {"subject": "Ride Request Received", "body": body}
