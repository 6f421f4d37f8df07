"""Pydantic request/response models for the Rides API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EmergencyAlertRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)


class EmergencyAlertResponse(BaseModel):
    ride_id: str
    subject_id: str
    handlers: int


class RideEventResponse(BaseModel):
    kind: str
    ride_id: str
    subject_id: str
    occurred_at: datetime
    attributes: dict[str, Any] = Field(default_factory=dict)


class RideEventListResponse(BaseModel):
    items: list[RideEventResponse]
    total: int
