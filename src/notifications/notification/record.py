"""Persisted form of NotificationItem (table ``notification_items``).

Columns that queries filter or sort on (status, priority rank, schedule,
correlation, provider reference) are stored separately from the JSON
metadata. ``seq`` breaks ties between items created in the same instant.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notifications.notification.notification import (
    NotificationChannel,
    NotificationItem,
    NotificationPriority,
    NotificationStatus,
)
from shared.utils.db import Base


class NotificationRecord(Base):
    __tablename__ = "notification_items"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    channel: Mapped[str] = mapped_column(String(20))
    recipient: Mapped[str] = mapped_column(String(200))
    message_body: Mapped[str] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(10))
    priority_rank: Mapped[int] = mapped_column(Integer, index=True)
    scheduled_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    status: Mapped[str] = mapped_column(String(20), index=True)
    correlation_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    notification_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True, unique=True)
    provider_message_ref: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    delivery_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    @classmethod
    def from_item(cls, item: NotificationItem, idempotency_key: str | None = None) -> "NotificationRecord":
        return cls(
            id=item.id,
            channel=item.channel.value,
            recipient=item.recipient,
            message_body=item.message_body,
            priority=item.priority.value,
            priority_rank=item.priority.rank,
            scheduled_time=item.scheduled_time,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            status=item.status.value,
            correlation_id=item.metadata.get("correlation_id"),
            notification_type=item.metadata.get("notification_type"),
            idempotency_key=idempotency_key,
            provider_message_ref=item.metadata.get("provider_message_ref"),
            delivery_confirmed=bool(item.metadata.get("delivery_confirmed", False)),
            last_error=item.last_error,
            meta=item.metadata,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    def to_item(self) -> NotificationItem:
        metadata = dict(self.meta or {})
        metadata.setdefault("retry_history", [])
        if self.provider_message_ref:
            metadata["provider_message_ref"] = self.provider_message_ref
        metadata["delivery_confirmed"] = bool(self.delivery_confirmed)

        return NotificationItem(
            id=self.id,
            channel=NotificationChannel(self.channel),
            recipient=self.recipient,
            message_body=self.message_body,
            priority=NotificationPriority(self.priority),
            scheduled_time=as_utc(self.scheduled_time),
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            status=NotificationStatus(self.status),
            metadata=metadata,
            last_error=self.last_error,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored time is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
