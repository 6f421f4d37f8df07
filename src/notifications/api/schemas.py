"""Pydantic request/response models for the Notifications API.

API schemas are separate from the queue's domain model (anti-corruption
pattern).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class CancelNotificationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class DeliveryStatusRequest(BaseModel):
    """Provider status callback. Accepts Twilio field names or snake_case."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_sid: str = Field(..., alias="MessageSid", min_length=1)
    message_status: str = Field(..., alias="MessageStatus", min_length=1)
    error_code: str | None = Field(default=None, alias="ErrorCode")


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------
class StatusResponse(BaseModel):
    status: str = "ok"


class NotificationResponse(BaseModel):
    id: str
    channel: str
    recipient: str
    message_body: str
    priority: str
    status: str
    scheduled_time: datetime | None = None
    retry_count: int
    max_retries: int
    last_error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_item(cls, item) -> "NotificationResponse":
        return cls(
            id=item.id,
            channel=item.channel.value,
            recipient=item.recipient,
            message_body=item.message_body,
            priority=item.priority.value,
            status=item.status.value,
            scheduled_time=item.scheduled_time,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            last_error=item.last_error,
            metadata=item.metadata,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int


class QueueStatsResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0


class DeliveryOutcomeResponse(BaseModel):
    outcome: str
