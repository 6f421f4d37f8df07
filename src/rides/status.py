"""Ride status code spaces.

A ride record carries one code from each space independently:

    RideProgressStatus  (rideStatus)         physical trip, 0..509
    RideWorkflowStatus  (rideRequestStatus)  administrative approval, 100..1100

Codes ending in 9 mark a failed or interrupted stage.
"""

from enum import Enum, IntEnum


class StatusSpace(Enum):
    PROGRESS = "rideStatus"
    WORKFLOW = "rideRequestStatus"


class RideProgressStatus(IntEnum):
    REQUEST_IN_PROGRESS = 0
    REQUEST_CONFIRMED = 100
    REQUEST_CANCELED = 109
    RIDE_STARTED = 200
    RIDE_INTERRUPTED = 209
    RIDER_PICKED_UP = 300
    RIDER_NOT_PICKED_UP = 309
    RIDER_DROPPED_OFF = 400
    RIDER_NOT_DROPPED_OFF = 409
    ROUNDTRIP_RETURNING = 450
    ROUNDTRIP_RETURN_INTERRUPTED = 459
    ROUNDTRIP_COMPLETE = 475
    ROUNDTRIP_COMPLETION_INTERRUPTED = 479
    RIDE_COMPLETE = 500
    RIDE_INCOMPLETE = 509


class RideWorkflowStatus(IntEnum):
    REQUEST_OPEN = 100
    REQUEST_CANCELED = 109
    DRIVER_NEEDED = 200
    DRIVER_UNAVAILABLE = 209
    VEHICLE_NEEDED = 300
    VEHICLE_UNAVAILABLE = 309
    CONFIRMATION_NEEDED = 400
    RIDE_CANCELED_UNCONFIRMED = 409
    BROKER_NOTIFIED = 500
    BROKER_APPROVED = 525
    BROKER_DENIED = 599
    FLEET_MANAGER_NOTIFIED = 600
    FLEET_MANAGER_APPROVED = 625
    FLEET_MANAGER_DENIED = 699
    STAFF_NOTIFIED = 700
    STAFF_APPROVED = 725
    STAFF_DENIED = 799
    READY_TO_RIDE = 1000
    REQUEST_CLOSED = 1100


def parse_code(enum_cls, value):
    """Return the enum member for ``value``, or None for unknown/missing codes."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return enum_cls(int(value))
    except (TypeError, ValueError):
        return None
