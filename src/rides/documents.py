"""Ride documents as stored by the dispatch datastore.

The datastore is owned by the dispatch application; ridestream only reads
it. ``RideDocument`` maps the external camelCase record onto snake_case
attributes.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rides.change_feed import InMemoryChangeFeed, Operation

RIDES_COLLECTION = "rides"
SERVICE_USERS_COLLECTION = "serviceusers"
SERVICE_PROVIDERS_COLLECTION = "serviceproviders"


class RideDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    uuid: str
    service_user_uuid: str = Field(alias="serviceUserUuid")
    service_user_role: str | None = Field(default=None, alias="serviceUserRole")
    assigned_driver_uuid: str | None = Field(default=None, alias="assignedDriverUuid")
    assigned_vehicle_uuid: str | None = Field(default=None, alias="assignedVehicleUuid")
    pickup_address: str | None = Field(default=None, alias="pickupAddress")
    dropoff_address: str | None = Field(default=None, alias="dropOffAddress")
    round_trip: bool = Field(default=False, alias="roundTrip")
    purpose: str | None = None
    pickup_requested_time: datetime | None = Field(default=None, alias="pickupRequestedTime")
    ride_started_actual_time: datetime | None = Field(default=None, alias="rideStartedActualTime")
    ride_status: int | None = Field(default=None, alias="rideStatus")
    ride_request_status: int | None = Field(default=None, alias="rideRequestStatus")

    @field_validator("pickup_requested_time", "ride_started_actual_time")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class RideDocumentStore(ABC):
    """Read access to the external ride collection."""

    @abstractmethod
    async def get(self, ride_id: str) -> RideDocument | None: ...

    @abstractmethod
    async def find_by_progress_status(self, code: int) -> list[RideDocument]: ...


class InMemoryRideStore(RideDocumentStore):
    """Dictionary-backed ride collection.

    When a feed is attached every insert and update is published to it,
    the way the real datastore's change stream would report it.
    """

    def __init__(self, feed: InMemoryChangeFeed | None = None):
        self._documents: dict[str, dict[str, Any]] = {}
        self._feed = feed

    async def get(self, ride_id: str) -> RideDocument | None:
        raw = self._documents.get(str(ride_id))
        return RideDocument.model_validate(raw) if raw is not None else None

    async def find_by_progress_status(self, code: int) -> list[RideDocument]:
        return [
            RideDocument.model_validate(raw) for raw in self._documents.values() if raw.get("rideStatus") == code
        ]

    def insert(self, document: dict[str, Any]) -> str:
        ride_id = str(document["uuid"])
        self._documents[ride_id] = dict(document)
        if self._feed is not None:
            self._feed.publish(RIDES_COLLECTION, Operation.INSERT, ride_id, full_document=document)
        return ride_id

    def update(self, ride_id: str, **fields: Any) -> None:
        document = self._documents[str(ride_id)]
        previous = {key: document.get(key) for key in fields}
        document.update(fields)
        if self._feed is not None:
            self._feed.publish(
                RIDES_COLLECTION,
                Operation.UPDATE,
                str(ride_id),
                updated_fields=fields,
                previous_fields=previous,
            )

    def delete(self, ride_id: str) -> None:
        self._documents.pop(str(ride_id), None)
