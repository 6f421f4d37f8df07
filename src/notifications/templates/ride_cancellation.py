"""Ride cancellation template — sent when the ride is cancelled upstream."""

from notifications.notification.notification import NotificationChannel, NotificationType


class RideCancellationTemplate:
    notification_type = NotificationType.RIDE_CANCELLATION.value
    default_channels = [
        NotificationChannel.SMS.value,
        NotificationChannel.EMAIL.value,
        NotificationChannel.PUSH.value,
    ]

    @staticmethod
    def render(context: dict) -> dict:
        body = "Your ride has been cancelled. Please request a new ride if needed."
        reason = context.get("reason")
        if reason:
            body = f"{body} Reason: {reason}."
        return {"subject": "Ride Cancelled", "body": body}
