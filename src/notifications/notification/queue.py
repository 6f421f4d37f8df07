"""NotificationQueue — durable, priority-ordered store of notification items.

Every status change is a single conditional UPDATE keyed by the item id
and its expected current status (and, for failures, its expected retry
count). The UPDATE's rowcount decides whether the change happened, so
several dispatchers can share one queue without claiming an item twice.
Lost races are reported by returning False, never by raising.

Times come from ``clock`` and must be timezone-aware UTC.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notifications.notification.notification import (
    NotificationItem,
    NotificationPriority,
    NotificationStatus,
    RetryPolicy,
    transition_sources,
)
from notifications.notification.record import NotificationRecord
from shared.errors import NotificationNotFound, ValidationError
from shared.utils.db import session_scope

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

_NO_SYNC = {"synchronize_session": False}


def utc_now() -> datetime:
    return datetime.now(UTC)


class Dispatcher(Protocol):
    def ensure_running(self) -> bool: ...


class NotificationQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: RetryPolicy | None = None,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self.policy = policy or RetryPolicy()
        self._clock = clock
        self._dispatcher: Dispatcher | None = None

    def now(self) -> datetime:
        return self._clock()

    def attach_dispatcher(self, dispatcher: Dispatcher) -> None:
        """Register the dispatch loop that ``enqueue`` (re)starts."""
        self._dispatcher = dispatcher

    # -------------------------------------------------------------------
    # Producer API
    # -------------------------------------------------------------------
    async def enqueue(
        self,
        channel,
        recipient: str,
        message_body: str,
        priority=NotificationPriority.MEDIUM,
        metadata: dict[str, Any] | None = None,
        scheduled_time: datetime | None = None,
        max_retries: int | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        """Add a PENDING item and make sure the dispatch loop is running.

        An ``idempotency_key`` that was already enqueued returns the
        existing item's id instead of creating a duplicate.
        """
        item = NotificationItem.create(
            channel=channel,
            recipient=recipient,
            message_body=message_body,
            priority=priority,
            metadata=metadata,
            scheduled_time=scheduled_time,
            max_retries=self.policy.max_retries if max_retries is None else max_retries,
            now=self.now(),
        )

        if idempotency_key is not None:
            existing = await self._find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info("Duplicate enqueue ignored", idempotency_key=idempotency_key, notification_id=existing)
                return existing

        try:
            async with session_scope(self._session_factory) as session:
                session.add(NotificationRecord.from_item(item, idempotency_key=idempotency_key))
        except IntegrityError:
            existing = await self._find_by_idempotency_key(idempotency_key) if idempotency_key else None
            if existing is None:
                raise
            logger.info("Duplicate enqueue ignored", idempotency_key=idempotency_key, notification_id=existing)
            return existing

        logger.info(
            "Notification enqueued",
            notification_id=item.id,
            channel=item.channel.value,
            priority=item.priority.value,
            correlation_id=item.correlation_id,
            scheduled_time=item.scheduled_time.isoformat() if item.scheduled_time else None,
        )

        if self._dispatcher is not None:
            self._dispatcher.ensure_running()

        return item.id

    async def cancel_by_correlation(self, correlation_id: str, reason: str | None = None) -> int:
        """Cancel every PENDING or PROCESSING item of one ride."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(NotificationRecord)
                .where(
                    NotificationRecord.correlation_id == correlation_id,
                    NotificationRecord.status.in_(_values(transition_sources(NotificationStatus.CANCELLED))),
                )
                .values(
                    status=NotificationStatus.CANCELLED.value,
                    last_error=reason,
                    updated_at=self.now(),
                ),
                execution_options=_NO_SYNC,
            )
        count = result.rowcount
        logger.info("Notifications cancelled for ride", correlation_id=correlation_id, count=count, reason=reason)
        return count

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    async def get(self, notification_id: str) -> NotificationItem:
        record = await self._load(notification_id)
        if record is None:
            raise NotificationNotFound(notification_id)
        return record.to_item()

    async def list_eligible(self, limit: int) -> list[NotificationItem]:
        """PENDING items that are due, highest priority first, FIFO within a priority."""
        if limit <= 0:
            return []
        now = self.now()
        statement = (
            select(NotificationRecord)
            .where(
                NotificationRecord.status == NotificationStatus.PENDING.value,
                (NotificationRecord.scheduled_time.is_(None)) | (NotificationRecord.scheduled_time <= now),
            )
            .order_by(
                NotificationRecord.priority_rank.desc(),
                NotificationRecord.created_at.asc(),
                NotificationRecord.seq.asc(),
            )
            .limit(limit)
        )
        return await self._fetch(statement)

    async def list_stale(self, older_than: timedelta) -> list[NotificationItem]:
        """PROCESSING items whose claim is older than ``older_than``."""
        cutoff = self.now() - older_than
        statement = (
            select(NotificationRecord)
            .where(
                NotificationRecord.status == NotificationStatus.PROCESSING.value,
                NotificationRecord.updated_at < cutoff,
            )
            .order_by(NotificationRecord.seq)
        )
        return await self._fetch(statement)

    async def history(self, correlation_id: str) -> list[NotificationItem]:
        """Every item of one ride, oldest first."""
        statement = (
            select(NotificationRecord)
            .where(NotificationRecord.correlation_id == correlation_id)
            .order_by(NotificationRecord.created_at, NotificationRecord.seq)
        )
        return await self._fetch(statement)

    async def find_by_provider_ref(self, provider_message_ref: str) -> NotificationItem | None:
        items = await self._fetch(
            select(NotificationRecord).where(NotificationRecord.provider_message_ref == provider_message_ref)
        )
        return items[0] if items else None

    async def exists_for(
        self,
        correlation_id: str,
        notification_type: str,
        statuses: Iterable[NotificationStatus] = (
            NotificationStatus.PENDING,
            NotificationStatus.PROCESSING,
            NotificationStatus.SENT,
        ),
    ) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(NotificationRecord)
                .where(
                    NotificationRecord.correlation_id == correlation_id,
                    NotificationRecord.notification_type == notification_type,
                    NotificationRecord.status.in_(_values(statuses)),
                )
            )
            return result.scalar_one() > 0

    async def stats(self) -> dict[str, int]:
        """Item counts per status, plus the total."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationRecord.status, func.count()).group_by(NotificationRecord.status)
            )
            counts = dict(result.all())

        stats = {status.value: counts.get(status.value, 0) for status in NotificationStatus}
        stats["total"] = sum(stats.values())
        return stats

    # -------------------------------------------------------------------
    # Status changes
    # -------------------------------------------------------------------
    async def claim(self, notification_id: str) -> bool:
        """PENDING → PROCESSING. False if the item is no longer PENDING."""
        claimed = await self._transition(
            notification_id,
            expected=transition_sources(NotificationStatus.PROCESSING),
            status=NotificationStatus.PROCESSING.value,
            updated_at=self.now(),
        )
        if not claimed:
            logger.debug("Claim lost", notification_id=notification_id)
        return claimed

    async def mark_sent(self, notification_id: str, provider_message_ref: str | None = None) -> bool:
        """PROCESSING → SENT, recording the provider's message reference."""
        sent = await self._transition(
            notification_id,
            expected=transition_sources(NotificationStatus.SENT),
            status=NotificationStatus.SENT.value,
            provider_message_ref=provider_message_ref,
            last_error=None,
            updated_at=self.now(),
        )
        if sent:
            logger.info("Notification sent", notification_id=notification_id, provider_message_ref=provider_message_ref)
        else:
            logger.warning("Sent result for item no longer processing", notification_id=notification_id)
        return sent

    async def mark_failed(
        self,
        notification_id: str,
        reason: str,
        retryable: bool = True,
        source: str = "send",
    ) -> bool:
        """Record a failed attempt on a PROCESSING item.

        Requeues with backoff while retries remain, otherwise the item
        ends FAILED. Items that are not PROCESSING are left untouched.
        """
        item = await self._apply_failure(
            notification_id,
            NotificationStatus.PROCESSING,
            lambda item, now: item.mark_failed(reason, self.policy, now, retryable=retryable, source=source),
        )
        return item is not None

    async def mark_undelivered(
        self,
        notification_id: str,
        reason: str,
        retryable: bool = True,
    ) -> NotificationItem | None:
        """Apply a provider failure report to a SENT item."""
        return await self._apply_failure(
            notification_id,
            NotificationStatus.SENT,
            lambda item, now: item.mark_undelivered(reason, self.policy, now, retryable=retryable),
        )

    async def confirm_delivery(self, notification_id: str) -> bool:
        """Flag a SENT item as confirmed delivered by the provider, once."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(NotificationRecord)
                .where(
                    NotificationRecord.id == notification_id,
                    NotificationRecord.status == NotificationStatus.SENT.value,
                    NotificationRecord.delivery_confirmed.is_(False),
                )
                .values(delivery_confirmed=True, updated_at=self.now()),
                execution_options=_NO_SYNC,
            )
        return result.rowcount == 1

    async def cancel(self, notification_id: str, reason: str | None = None) -> bool:
        """PENDING or PROCESSING → CANCELLED."""
        cancelled = await self._transition(
            notification_id,
            expected=transition_sources(NotificationStatus.CANCELLED),
            status=NotificationStatus.CANCELLED.value,
            last_error=reason,
            updated_at=self.now(),
        )
        if cancelled:
            logger.info("Notification cancelled", notification_id=notification_id, reason=reason)
        return cancelled

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    async def _transition(self, notification_id: str, expected: tuple[NotificationStatus, ...], **values) -> bool:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(NotificationRecord)
                .where(
                    NotificationRecord.id == notification_id,
                    NotificationRecord.status.in_(_values(expected)),
                )
                .values(**values),
                execution_options=_NO_SYNC,
            )
        return result.rowcount == 1

    async def _apply_failure(self, notification_id: str, expected: NotificationStatus, apply) -> NotificationItem | None:
        record = await self._load(notification_id)
        if record is None:
            logger.warning("Failure reported for unknown notification", notification_id=notification_id)
            return None

        item = record.to_item()
        if item.status != expected:
            logger.info(
                "Failure ignored, item not in expected status",
                notification_id=notification_id,
                status=item.status.value,
                expected=expected.value,
            )
            return None

        previous_retry_count = item.retry_count
        try:
            outcome = apply(item, self.now())
        except ValidationError as exc:
            logger.warning("Failure rejected", notification_id=notification_id, error=str(exc))
            return None

        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(NotificationRecord)
                .where(
                    NotificationRecord.id == notification_id,
                    NotificationRecord.status == expected.value,
                    NotificationRecord.retry_count == previous_retry_count,
                )
                .values(
                    status=item.status.value,
                    retry_count=item.retry_count,
                    scheduled_time=item.scheduled_time,
                    last_error=item.last_error,
                    delivery_confirmed=bool(item.metadata.get("delivery_confirmed", False)),
                    meta=_stored_metadata(item.metadata),
                    updated_at=item.updated_at,
                ),
                execution_options=_NO_SYNC,
            )

        if result.rowcount != 1:
            logger.warning("Failure lost a concurrent update", notification_id=notification_id)
            return None

        log = logger.info if outcome.retried else logger.warning
        log(
            "Notification retry scheduled" if outcome.retried else "Notification failed",
            notification_id=notification_id,
            reason=item.last_error,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            next_attempt_at=outcome.entry.get("next_attempt_at"),
        )
        return item

    async def _load(self, notification_id: str) -> NotificationRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(select(NotificationRecord).where(NotificationRecord.id == notification_id))
            return result.scalar_one_or_none()

    async def _fetch(self, statement) -> list[NotificationItem]:
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [record.to_item() for record in result.scalars()]

    async def _find_by_idempotency_key(self, key: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationRecord.id).where(NotificationRecord.idempotency_key == key)
            )
            return result.scalar_one_or_none()


def _values(statuses: Iterable[NotificationStatus]) -> list[str]:
    return [status.value for status in statuses]


def _stored_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Metadata minus the keys kept in their own columns."""
    return {k: v for k, v in metadata.items() if k not in ("provider_message_ref", "delivery_confirmed")}
