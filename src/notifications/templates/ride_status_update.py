"""Ride status update template — one message per rider-facing ride status."""

from notifications.notification.notification import NotificationChannel, NotificationType

STATUS_MESSAGES = {
    "confirmed": "Your ride request has been confirmed! A driver will be assigned soon.",
    "ride_started": "Your ride has begun! You're on your way to your destination.",
    "pickup_complete": "You have been picked up successfully.",
    "dropoff_complete": "You have arrived at your destination. Thank you for using our service!",
    "completed": "Your ride is complete. Thank you for riding with us!",
    "interrupted": "Your ride has been interrupted. We'll contact you shortly with updates.",
}


class RideStatusUpdateTemplate:
    notification_type = NotificationType.RIDE_STATUS_UPDATE.value
    default_channels = [
        NotificationChannel.SMS.value,
        NotificationChannel.EMAIL.value,
        NotificationChannel.PUSH.value,
    ]

    @staticmethod
    def render(context: dict) -> dict:
        status = context.get("status", "updated")
        body = STATUS_MESSAGES.get(status)
        if body is None:
            info = context.get("info", "")
            body = f"Your ride status has been updated: {status}. {info}".strip()
        return {"subject": "Ride Update", "body": body}
