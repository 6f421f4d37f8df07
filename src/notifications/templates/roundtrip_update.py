"""Roundtrip update template."""

from notifications.notification.notification import NotificationChannel, NotificationType

_MESSAGES = {
    "returning": "Your return trip has begun. You're heading back to your pickup location.",
    "complete": "Your roundtrip has been completed. Thank you for using our service!",
}


class RoundtripUpdateTemplate:
    notification_type = NotificationType.ROUNDTRIP_UPDATE.value
    default_channels = [NotificationChannel.SMS.value, NotificationChannel.PUSH.value]

    @staticmethod
    def render(context: dict) -> dict:
        stage = context.get("stage", "returning")
        return {"subject": "Roundtrip Update", "body": _MESSAGES.get(stage, _MESSAGES["returning"])}
