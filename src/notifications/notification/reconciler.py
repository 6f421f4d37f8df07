"""Delivery reconciler — applies provider delivery receipts to sent items.

    accepted             no change
    delivered            SENT item flagged as delivery-confirmed
    failed/undelivered   retryable error code → retry with backoff
                         any other code       → FAILED, no retry consumed

Receipts for message references the queue does not know are logged and
dropped; the item may have been cancelled or pruned.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from notifications.notification.notification import NotificationStatus
from notifications.notification.queue import NotificationQueue
from notifications.projections.delivery_stats import DeliveryStatsProjection
from shared.settings import DEFAULT_RETRYABLE_ERROR_CODES

logger = structlog.get_logger(__name__)


class ReceiptStatus(Enum):
    ACCEPTED = "accepted"
    DELIVERED = "delivered"
    FAILED = "failed"
    UNDELIVERED = "undelivered"


# Provider status strings folded onto receipt statuses
_PROVIDER_STATUSES = {
    "accepted": ReceiptStatus.ACCEPTED,
    "queued": ReceiptStatus.ACCEPTED,
    "sending": ReceiptStatus.ACCEPTED,
    "sent": ReceiptStatus.ACCEPTED,
    "scheduled": ReceiptStatus.ACCEPTED,
    "delivered": ReceiptStatus.DELIVERED,
    "read": ReceiptStatus.DELIVERED,
    "failed": ReceiptStatus.FAILED,
    "undelivered": ReceiptStatus.UNDELIVERED,
}


class DeliveryReceipt(BaseModel):
    provider_message_ref: str
    status: ReceiptStatus
    error_code: str | None = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_provider(cls, message_ref: str, provider_status: str, error_code=None, observed_at=None):
        """Build a receipt from a provider's raw status string."""
        normalized = provider_status.strip().lower()
        if normalized not in _PROVIDER_STATUSES:
            raise ValueError(f"Unknown provider status: {provider_status}")
        status = _PROVIDER_STATUSES[normalized]
        return cls(
            provider_message_ref=message_ref,
            status=status,
            error_code=str(error_code) if error_code not in (None, "") else None,
            observed_at=observed_at or datetime.now(UTC),
        )


class ReconcileOutcome(Enum):
    UNKNOWN = "unknown"
    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    IGNORED = "ignored"


class DeliveryReconciler:
    def __init__(
        self,
        queue: NotificationQueue,
        retryable_codes: Iterable[str] = DEFAULT_RETRYABLE_ERROR_CODES,
        stats: DeliveryStatsProjection | None = None,
    ):
        self._queue = queue
        self.retryable_codes = frozenset(str(code) for code in retryable_codes)
        self._stats = stats

    def is_retryable(self, error_code: str | None) -> bool:
        return error_code is not None and error_code in self.retryable_codes

    async def reconcile(self, receipt: DeliveryReceipt) -> ReconcileOutcome:
        item = await self._queue.find_by_provider_ref(receipt.provider_message_ref)
        if item is None:
            logger.info(
                "Receipt for unknown message dropped",
                provider_message_ref=receipt.provider_message_ref,
                status=receipt.status.value,
            )
            return ReconcileOutcome.UNKNOWN

        if receipt.status == ReceiptStatus.ACCEPTED:
            logger.debug("Message accepted by provider", notification_id=item.id)
            return ReconcileOutcome.ACCEPTED

        if receipt.status == ReceiptStatus.DELIVERED:
            if await self._queue.confirm_delivery(item.id):
                logger.info("Delivery confirmed", notification_id=item.id)
                await self._record(True, receipt)
                return ReconcileOutcome.CONFIRMED
            logger.info("Delivery receipt for item not awaiting confirmation", notification_id=item.id, status=item.status.value)
            return ReconcileOutcome.IGNORED

        retryable = self.is_retryable(receipt.error_code)
        reason = f"Provider reported {receipt.status.value}"
        if receipt.error_code:
            reason = f"{reason} (error {receipt.error_code})"

        updated = await self._queue.mark_undelivered(item.id, reason, retryable=retryable)
        if updated is None:
            return ReconcileOutcome.IGNORED
        await self._record(False, receipt)

        logger.info(
            "Delivery failure reconciled",
            notification_id=item.id,
            error_code=receipt.error_code,
            retryable=retryable,
            status=updated.status.value,
        )
        if updated.status == NotificationStatus.PENDING:
            return ReconcileOutcome.RETRY_SCHEDULED
        return ReconcileOutcome.FAILED

    async def _record(self, delivered: bool, receipt: DeliveryReceipt) -> None:
        if self._stats is None:
            return
        try:
            await self._stats.record(delivered, receipt.observed_at)
        except Exception:
            logger.exception("Failed to record delivery stats", provider_message_ref=receipt.provider_message_ref)
