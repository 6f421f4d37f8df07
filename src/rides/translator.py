"""Status translator — maps a status code change to a ride DomainEvent.

Two fixed tables, one per status space. Every enum member has an entry:
either ``Emit`` (produce an event of a kind, with an optional reason) or
``Ignore`` (log only). Codes outside the enums translate to ``Ignore`` as
well. The translator keeps no state between calls and does not check
whether old → new is a legal business transition; events are best-effort
notifications, not confirmations of ride state.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from rides.documents import RideDocument
from rides.status import RideProgressStatus, RideWorkflowStatus, StatusSpace, parse_code
from shared.events.rides import DomainEvent, RideEventKind

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Emit:
    kind: RideEventKind
    reason: str | None = None
    include_driver: bool = False
    include_vehicle: bool = False


@dataclass(frozen=True)
class Ignore:
    note: str


Outcome = Emit | Ignore


# ---------------------------------------------------------------------------
# Mapping tables
# ---------------------------------------------------------------------------
PROGRESS_TABLE: dict[RideProgressStatus, Outcome] = {
    RideProgressStatus.REQUEST_IN_PROGRESS: Ignore("Ride request in progress"),
    RideProgressStatus.REQUEST_CONFIRMED: Emit(RideEventKind.REQUEST_CONFIRMED),
    RideProgressStatus.REQUEST_CANCELED: Emit(RideEventKind.REQUEST_CANCELED, reason="Cancelled automatically"),
    RideProgressStatus.RIDE_STARTED: Emit(RideEventKind.RIDE_STARTED, include_driver=True, include_vehicle=True),
    RideProgressStatus.RIDE_INTERRUPTED: Emit(RideEventKind.RIDE_INTERRUPTED, reason="Ride interrupted"),
    RideProgressStatus.RIDER_PICKED_UP: Emit(RideEventKind.RIDER_PICKED_UP, include_driver=True),
    RideProgressStatus.RIDER_NOT_PICKED_UP: Emit(RideEventKind.RIDER_NOT_PICKED_UP, reason="Rider not picked up"),
    RideProgressStatus.RIDER_DROPPED_OFF: Emit(RideEventKind.RIDER_DROPPED_OFF),
    RideProgressStatus.RIDER_NOT_DROPPED_OFF: Emit(RideEventKind.RIDER_NOT_DROPPED_OFF, reason="Rider not dropped off"),
    RideProgressStatus.ROUNDTRIP_RETURNING: Emit(RideEventKind.ROUNDTRIP_RETURNING),
    RideProgressStatus.ROUNDTRIP_RETURN_INTERRUPTED: Emit(
        RideEventKind.ROUNDTRIP_RETURN_INTERRUPTED, reason="Roundtrip return interrupted"
    ),
    RideProgressStatus.ROUNDTRIP_COMPLETE: Emit(RideEventKind.ROUNDTRIP_COMPLETE),
    RideProgressStatus.ROUNDTRIP_COMPLETION_INTERRUPTED: Emit(
        RideEventKind.ROUNDTRIP_COMPLETION_INTERRUPTED, reason="Roundtrip completion interrupted"
    ),
    RideProgressStatus.RIDE_COMPLETE: Emit(RideEventKind.RIDE_COMPLETE),
    RideProgressStatus.RIDE_INCOMPLETE: Emit(RideEventKind.RIDE_INCOMPLETE, reason="Ride marked as incomplete"),
}

WORKFLOW_TABLE: dict[RideWorkflowStatus, Outcome] = {
    RideWorkflowStatus.REQUEST_OPEN: Ignore("Ride request open"),
    RideWorkflowStatus.REQUEST_CANCELED: Emit(RideEventKind.REQUEST_CANCELED, reason="Ride request canceled"),
    RideWorkflowStatus.DRIVER_NEEDED: Ignore("Driver needed"),
    RideWorkflowStatus.DRIVER_UNAVAILABLE: Ignore("Driver unavailable"),
    RideWorkflowStatus.VEHICLE_NEEDED: Ignore("Vehicle needed"),
    RideWorkflowStatus.VEHICLE_UNAVAILABLE: Ignore("Vehicle unavailable"),
    RideWorkflowStatus.CONFIRMATION_NEEDED: Ignore("Ride confirmation needed"),
    RideWorkflowStatus.RIDE_CANCELED_UNCONFIRMED: Emit(
        RideEventKind.REQUEST_CANCELED, reason="Ride canceled, unconfirmed"
    ),
    RideWorkflowStatus.BROKER_NOTIFIED: Ignore("Transport broker notified"),
    RideWorkflowStatus.BROKER_APPROVED: Ignore("Transport broker approved"),
    RideWorkflowStatus.BROKER_DENIED: Emit(RideEventKind.REQUEST_CANCELED, reason="Transport broker denied"),
    RideWorkflowStatus.FLEET_MANAGER_NOTIFIED: Ignore("Fleet manager notified"),
    RideWorkflowStatus.FLEET_MANAGER_APPROVED: Ignore("Fleet manager approved"),
    RideWorkflowStatus.FLEET_MANAGER_DENIED: Emit(RideEventKind.REQUEST_CANCELED, reason="Fleet manager denied"),
    RideWorkflowStatus.STAFF_NOTIFIED: Ignore("Staff notified"),
    RideWorkflowStatus.STAFF_APPROVED: Ignore("Staff approved"),
    RideWorkflowStatus.STAFF_DENIED: Emit(RideEventKind.REQUEST_CANCELED, reason="Staff denied"),
    RideWorkflowStatus.READY_TO_RIDE: Ignore("Ride request ready to ride"),
    RideWorkflowStatus.REQUEST_CLOSED: Ignore("Ride request closed"),
}

_TABLES = {
    StatusSpace.PROGRESS: (RideProgressStatus, PROGRESS_TABLE),
    StatusSpace.WORKFLOW: (RideWorkflowStatus, WORKFLOW_TABLE),
}


def _check_exhaustive() -> None:
    for space, (enum_cls, table) in _TABLES.items():
        missing = set(enum_cls) - set(table)
        if missing:
            raise RuntimeError(f"{space.name} status table is missing {sorted(m.name for m in missing)}")


_check_exhaustive()


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------
def outcome_for(space: StatusSpace, code) -> Outcome:
    """Look up the table entry for a raw code. Unknown codes are ignored."""
    enum_cls, table = _TABLES[space]
    member = parse_code(enum_cls, code)
    if member is None:
        return Ignore(f"Unknown {space.value} code {code!r}")
    return table[member]


def translate(
    space: StatusSpace,
    old_value,
    new_value,
    document: RideDocument,
    occurred_at: datetime | None = None,
) -> DomainEvent | None:
    """Translate one status change of ``document`` into at most one event."""
    outcome = outcome_for(space, new_value)

    if isinstance(outcome, Ignore):
        logger.info(
            "Status change ignored",
            space=space.value,
            ride_id=document.uuid,
            old=old_value,
            new=new_value,
            note=outcome.note,
        )
        return None

    attributes: dict[str, Any] = {
        "status_space": space.value,
        "old_status": old_value,
        "new_status": new_value,
        "pickup_address": document.pickup_address,
        "dropoff_address": document.dropoff_address,
        "round_trip": document.round_trip,
    }
    if outcome.reason:
        attributes["reason"] = outcome.reason
    if outcome.include_driver and document.assigned_driver_uuid is not None:
        attributes["driver_id"] = str(document.assigned_driver_uuid)
    if outcome.include_vehicle and document.assigned_vehicle_uuid is not None:
        attributes["vehicle_id"] = str(document.assigned_vehicle_uuid)

    event = DomainEvent(
        kind=outcome.kind,
        correlation_id=str(document.uuid),
        subject_id=str(document.service_user_uuid),
        occurred_at=occurred_at or datetime.now(UTC),
        attributes=attributes,
    )

    logger.info(
        "Status change translated",
        space=space.value,
        ride_id=event.correlation_id,
        old=old_value,
        new=new_value,
        kind=event.kind.value,
    )
    return event
