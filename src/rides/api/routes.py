"""FastAPI routes for the Rides context — emergency alerts and the ride event log."""

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Request
from rides.api.schemas import (
    EmergencyAlertRequest,
    EmergencyAlertResponse,
    RideEventListResponse,
    RideEventResponse,
)
from shared.events.rides import DomainEvent, RideEventKind

router = APIRouter(prefix="/rides", tags=["rides"])


def _runtime(request: Request):
    return request.app.state.runtime


@router.post("/{ride_id}/emergency", response_model=EmergencyAlertResponse)
async def raise_emergency(ride_id: str, body: EmergencyAlertRequest, request: Request) -> EmergencyAlertResponse:
    """Publish an emergency alert for a ride's rider."""
    runtime = _runtime(request)
    ride = await runtime.rides.get(ride_id)
    if ride is None:
        raise HTTPException(status_code=404, detail="Ride not found")

    event = DomainEvent(
        kind=RideEventKind.EMERGENCY_ALERT,
        correlation_id=ride.uuid,
        subject_id=ride.service_user_uuid,
        occurred_at=datetime.now(UTC),
        attributes={"message": body.message, "driver_id": ride.assigned_driver_uuid},
    )
    handlers = await runtime.bus.publish(event.kind, event)
    return EmergencyAlertResponse(ride_id=ride.uuid, subject_id=ride.service_user_uuid, handlers=handlers)


@router.get("/{ride_id}/events", response_model=RideEventListResponse)
async def ride_events(ride_id: str, request: Request) -> RideEventListResponse:
    events = await _runtime(request).event_log.history(ride_id)
    return RideEventListResponse(items=[RideEventResponse(**event) for event in events], total=len(events))
