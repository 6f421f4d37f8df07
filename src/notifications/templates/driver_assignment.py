"""Assignment templates — rider and driver messages when a driver or vehicle is assigned."""

from notifications.notification.notification import NotificationChannel, NotificationType


class DriverAssignedTemplate:
    notification_type = NotificationType.DRIVER_ASSIGNED.value
    default_channels = [
        NotificationChannel.SMS.value,
        NotificationChannel.EMAIL.value,
        NotificationChannel.PUSH.value,
    ]

    @staticmethod
    def render(context: dict) -> dict:
        return {
            "subject": "Driver Assigned",
            "body": "Great news! A driver has been assigned to your ride.",
        }


class NewRideAssignmentTemplate:
    notification_type = NotificationType.NEW_RIDE_ASSIGNMENT.value
    default_channels = [NotificationChannel.SMS.value, NotificationChannel.PUSH.value]

    @staticmethod
    def render(context: dict) -> dict:
        body = "You have been assigned a new ride request. Please review and accept."
        pickup_address = context.get("pickup_address")
        if pickup_address:
            body = f"{body} Pickup: {pickup_address}."
        return {"subject": "New Ride Assignment", "body": body}


class VehicleAssignedTemplate:
    notification_type = NotificationType.VEHICLE_ASSIGNED.value
    default_channels = [NotificationChannel.SMS.value, NotificationChannel.PUSH.value]

    @staticmethod
    def render(context: dict) -> dict:
        return {
            "subject": "Vehicle Assigned",
            "body": "A vehicle has been assigned to your ride request.",
        }
