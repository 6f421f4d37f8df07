"""Emergency alert templates — for the rider and their primary emergency contact."""

from notifications.notification.notification import NotificationChannel, NotificationType


class EmergencyAlertTemplate:
    notification_type = NotificationType.EMERGENCY_ALERT.value
    default_channels = [NotificationChannel.SMS.value]

    @staticmethod
    def render(context: dict) -> dict:
        return {"subject": "Emergency Alert", "body": context.get("message", "Emergency alert for your ride.")}


class EmergencyContactAlertTemplate:
    notification_type = NotificationType.EMERGENCY_CONTACT_ALERT.value
    default_channels = [NotificationChannel.SMS.value]

    @staticmethod
    def render(context: dict) -> dict:
        relationship = context.get("relationship", "your contact")
        message = context.get("message", "")
        return {"subject": "Emergency Alert", "body": f"Emergency alert for {relationship}: {message}".strip()}
