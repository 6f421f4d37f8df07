"""Template registry — maps NotificationType to template classes.

Each template knows its default channels and how to render content
from event context data.
"""

from notifications.notification.notification import NotificationType
from notifications.templates.delay_notice import DelayNoticeTemplate
from notifications.templates.driver_assignment import (
    DriverAssignedTemplate,
    NewRideAssignmentTemplate,
    VehicleAssignedTemplate,
)
from notifications.templates.emergency_alert import (
    EmergencyAlertTemplate,
    EmergencyContactAlertTemplate,
)
from notifications.templates.pickup_reminder import PickupReminderTemplate
from notifications.templates.request_received import RequestReceivedTemplate
from notifications.templates.ride_cancellation import RideCancellationTemplate
from notifications.templates.ride_status_update import RideStatusUpdateTemplate
from notifications.templates.roundtrip_update import RoundtripUpdateTemplate

TEMPLATE_REGISTRY: dict[str, type] = {
    NotificationType.REQUEST_RECEIVED.value: RequestReceivedTemplate,
    NotificationType.RIDE_STATUS_UPDATE.value: RideStatusUpdateTemplate,
    NotificationType.DRIVER_ASSIGNED.value: DriverAssignedTemplate,
    NotificationType.NEW_RIDE_ASSIGNMENT.value: NewRideAssignmentTemplate,
    NotificationType.VEHICLE_ASSIGNED.value: VehicleAssignedTemplate,
    NotificationType.ROUNDTRIP_UPDATE.value: RoundtripUpdateTemplate,
    NotificationType.RIDE_CANCELLATION.value: RideCancellationTemplate,
    NotificationType.PICKUP_REMINDER.value: PickupReminderTemplate,
    NotificationType.DELAY_NOTICE.value: DelayNoticeTemplate,
    NotificationType.EMERGENCY_ALERT.value: EmergencyAlertTemplate,
    NotificationType.EMERGENCY_CONTACT_ALERT.value: EmergencyContactAlertTemplate,
}


def get_template(notification_type: str):
    """Look up a template class by notification type string."""
    template_cls = TEMPLATE_REGISTRY.get(notification_type)
    if template_cls is None:
        raise ValueError(f"No template registered for notification type: {notification_type}")
    return template_cls
