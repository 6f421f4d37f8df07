"""Delay notice template — the driver has not started the ride on time."""

from notifications.notification.notification import NotificationChannel, NotificationType


class DelayNoticeTemplate:
    notification_type = NotificationType.DELAY_NOTICE.value
    default_channels = [NotificationChannel.SMS.value, NotificationChannel.PUSH.value]

    @staticmethod
    def render(context: dict) -> dict:
        minutes = context.get("delay_minutes", "a few")
        reason = context.get("reason", "Driver running late")
        return {
            "subject": "Ride Delayed",
            "body": (
                f"We're experiencing a delay. Your driver will arrive approximately "
                f"{minutes} minutes late. Reason: {reason}. We apologize for the inconvenience."
            ),
        }
