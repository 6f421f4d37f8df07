"""Pickup reminder template — scheduled shortly before the requested pickup."""

from notifications.notification.notification import NotificationChannel, NotificationType


class PickupReminderTemplate:
    notification_type = NotificationType.PICKUP_REMINDER.value
    default_channels = [NotificationChannel.SMS.value, NotificationChannel.PUSH.value]

    @staticmethod
    def render(context: dict) -> dict:
        pickup_time = context.get("pickup_time", "the scheduled time")
        pickup_address = context.get("pickup_address", "your pickup location")
        return {
            "subject": "Pickup Reminder",
            "body": (
                f"Reminder: Your ride is scheduled for pickup at {pickup_time} "
                f"from {pickup_address}. Please be ready."
            ),
        }
