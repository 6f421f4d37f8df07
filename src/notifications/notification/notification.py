"""NotificationItem — one unit of outbound communication and its delivery lifecycle.

Items are created by ``NotificationQueue.enqueue`` and owned by the queue
until they reach a terminal status.

State Machine (5 states):
    PENDING → PROCESSING → SENT
    PENDING → PROCESSING → FAILED → (retry with backoff) → PENDING
    PENDING → CANCELLED
    PROCESSING → CANCELLED

A failure moves PROCESSING → FAILED and, while retries remain, straight on
to PENDING with ``scheduled_time`` pushed out by the backoff delay. A stored
FAILED item is terminal: its retries ran out or the failure was not
retryable.

A provider can still report a SENT item as undelivered; that report goes
through the same failure path (see ``mark_undelivered``).

Claim, send and cancel are single conditional UPDATEs in
``NotificationQueue`` guarded by ``transition_sources``. Failures need the
retry bookkeeping below, so the queue loads the item and applies
``mark_failed`` or ``mark_undelivered`` before writing it back.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from shared.errors import ValidationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class NotificationChannel(Enum):
    SMS = "sms"
    EMAIL = "email"
    PUSH = "push"


class NotificationPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    NotificationPriority.LOW: 0,
    NotificationPriority.MEDIUM: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.URGENT: 3,
}


class NotificationStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationType(Enum):
    REQUEST_RECEIVED = "RequestReceived"
    RIDE_STATUS_UPDATE = "RideStatusUpdate"
    DRIVER_ASSIGNED = "DriverAssigned"
    NEW_RIDE_ASSIGNMENT = "NewRideAssignment"
    VEHICLE_ASSIGNED = "VehicleAssigned"
    ROUNDTRIP_UPDATE = "RoundtripUpdate"
    RIDE_CANCELLATION = "RideCancellation"
    PICKUP_REMINDER = "PickupReminder"
    DELAY_NOTICE = "DelayNotice"
    EMERGENCY_ALERT = "EmergencyAlert"
    EMERGENCY_CONTACT_ALERT = "EmergencyContactAlert"


TERMINAL_STATUSES = frozenset({NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.CANCELLED})


# ---------------------------------------------------------------------------
# State Machine
# ---------------------------------------------------------------------------
_VALID_TRANSITIONS = {
    NotificationStatus.PENDING: {
        NotificationStatus.PROCESSING,
        NotificationStatus.CANCELLED,
    },
    NotificationStatus.PROCESSING: {
        NotificationStatus.SENT,
        NotificationStatus.FAILED,
        NotificationStatus.CANCELLED,
    },
    NotificationStatus.FAILED: {
        NotificationStatus.PENDING,  # Via retry, while retries remain
    },
    NotificationStatus.SENT: set(),  # Terminal
    NotificationStatus.CANCELLED: set(),  # Terminal
}


def can_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    return target in _VALID_TRANSITIONS.get(current, set())


def transition_sources(target: NotificationStatus) -> tuple[NotificationStatus, ...]:
    """Statuses an item may move to ``target`` from, in declaration order."""
    return tuple(status for status in NotificationStatus if can_transition(status, target))


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule applied between delivery attempts.

    ``delay_for(n)`` is the wait after the failure that took ``retry_count``
    from n to n + 1. Past the end of the table the cap is used.
    """

    backoff: tuple[float, ...] = (1, 5, 15, 60)
    cap: float = 300
    max_retries: int = 3

    def delay_for(self, retry_count: int) -> timedelta:
        seconds = self.backoff[retry_count] if retry_count < len(self.backoff) else self.cap
        return timedelta(seconds=min(seconds, self.cap))


@dataclass(frozen=True)
class FailureOutcome:
    retried: bool
    entry: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Item
# ---------------------------------------------------------------------------
class NotificationItem(BaseModel):
    """A message to one recipient over one channel."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    channel: NotificationChannel
    recipient: str
    message_body: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    scheduled_time: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3
    status: NotificationStatus = NotificationStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        channel,
        recipient: str,
        message_body: str,
        priority=NotificationPriority.MEDIUM,
        metadata: dict[str, Any] | None = None,
        scheduled_time: datetime | None = None,
        max_retries: int = 3,
        now: datetime | None = None,
    ) -> "NotificationItem":
        """Create a new item in PENDING status."""
        if max_retries < 0:
            raise ValidationError({"max_retries": ["Must not be negative"]})
        if not message_body:
            raise ValidationError({"message_body": ["Must not be empty"]})

        now = now or datetime.now(UTC)
        metadata = dict(metadata or {})
        metadata.setdefault("retry_history", [])

        return cls(
            channel=NotificationChannel(channel),
            recipient=recipient,
            message_body=message_body,
            priority=NotificationPriority(priority),
            scheduled_time=scheduled_time,
            retry_count=0,
            max_retries=max_retries,
            status=NotificationStatus.PENDING,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def correlation_id(self) -> str | None:
        return self.metadata.get("correlation_id")

    @property
    def retry_history(self) -> list[dict[str, Any]]:
        return self.metadata.setdefault("retry_history", [])

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: NotificationStatus) -> None:
        if not can_transition(self.status, target_status):
            raise ValidationError(
                {"status": [f"Cannot transition from {self.status.value} to {target_status.value}"]}
            )

    def mark_failed(
        self,
        reason: str,
        policy: RetryPolicy,
        now: datetime | None = None,
        retryable: bool = True,
        source: str = "send",
    ) -> FailureOutcome:
        """Record a failed attempt; requeue with backoff while retries remain.

        Non-retryable failures are terminal and do not consume a retry.
        """
        self._assert_can_transition(NotificationStatus.FAILED)
        return self._fail(reason, policy, now or datetime.now(UTC), retryable, source)

    def mark_undelivered(
        self,
        reason: str,
        policy: RetryPolicy,
        now: datetime | None = None,
        retryable: bool = True,
    ) -> FailureOutcome:
        """Apply a provider's failed-delivery report to a SENT item."""
        if self.status != NotificationStatus.SENT:
            raise ValidationError({"status": [f"Cannot report delivery failure for {self.status.value} item"]})
        self.metadata["delivery_confirmed"] = False
        return self._fail(reason, policy, now or datetime.now(UTC), retryable, "receipt")

    def _fail(self, reason: str, policy: RetryPolicy, now: datetime, retryable: bool, source: str) -> FailureOutcome:
        self.status = NotificationStatus.FAILED
        self.last_error = reason

        if retryable and self.retry_count < self.max_retries:
            delay = policy.delay_for(self.retry_count)
            self.retry_count += 1
        else:
            delay = None

        entry: dict[str, Any] = {
            "attempt": len(self.retry_history) + 1,
            "reason": reason,
            "source": source,
            "retryable": retryable,
            "retry_count": self.retry_count,
            "failed_at": now.isoformat(),
            "next_attempt_at": None,
        }

        retried = delay is not None and self.retry_count < self.max_retries
        if retried:
            self._assert_can_transition(NotificationStatus.PENDING)
            self.status = NotificationStatus.PENDING
            self.scheduled_time = now + delay
            entry["next_attempt_at"] = self.scheduled_time.isoformat()

        self.retry_history.append(entry)
        self.updated_at = now
        return FailureOutcome(retried=retried, entry=entry)
