"""Cross-context event contract for ride lifecycle events.

Ride events are produced by the rides context (status translation of
datastore mutations, or the emergency API) and consumed by the
notifications context and the ride event log.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RideEventKind(Enum):
    REQUEST_CREATED = "RequestCreated"
    REQUEST_CONFIRMED = "RequestConfirmed"
    REQUEST_CANCELED = "RequestCanceled"
    DRIVER_ASSIGNED = "DriverAssigned"
    VEHICLE_ASSIGNED = "VehicleAssigned"
    RIDE_STARTED = "RideStarted"
    RIDE_INTERRUPTED = "RideInterrupted"
    RIDER_PICKED_UP = "RiderPickedUp"
    RIDER_NOT_PICKED_UP = "RiderNotPickedUp"
    RIDER_DROPPED_OFF = "RiderDroppedOff"
    RIDER_NOT_DROPPED_OFF = "RiderNotDroppedOff"
    ROUNDTRIP_RETURNING = "RoundtripReturning"
    ROUNDTRIP_RETURN_INTERRUPTED = "RoundtripReturnInterrupted"
    ROUNDTRIP_COMPLETE = "RoundtripComplete"
    ROUNDTRIP_COMPLETION_INTERRUPTED = "RoundtripCompletionInterrupted"
    RIDE_COMPLETE = "RideComplete"
    RIDE_INCOMPLETE = "RideIncomplete"
    EMERGENCY_ALERT = "EmergencyAlert"


class DomainEvent(BaseModel):
    """A business-significant transition of one ride.

    ``correlation_id`` is the ride id, ``subject_id`` the rider the event
    concerns. Events are immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    kind: RideEventKind
    correlation_id: str
    subject_id: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    attributes: dict[str, Any] = Field(default_factory=dict)

    def attribute(self, key: str, default=None):
        return self.attributes.get(key, default)
