"""Change event source — turns ride datastore mutations into ride events.

One subscription is opened per field-interest group:

    progress-status   rides.rideStatus updates
    workflow-status   rides.rideRequestStatus updates
    ride-inserts      new ride documents
    assignments       rides.assignedDriverUuid / assignedVehicleUuid updates
    user-audit        service user changes (logged only)
    provider-audit    service provider changes (logged only)

For updates the full ride document is re-read before translation, since
the event needs the rider, driver and addresses rather than just the
changed field. The position of every subscription is persisted after each
handled change; a disrupted subscription reconnects with exponential
backoff and resumes from that position.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime

import structlog

from rides.change_feed import ChangeFeed, FieldInterest, Operation, RawChange
from rides.documents import (
    RIDES_COLLECTION,
    SERVICE_PROVIDERS_COLLECTION,
    SERVICE_USERS_COLLECTION,
    RideDocument,
    RideDocumentStore,
)
from rides.resume_tokens import ResumeTokenStore
from rides.status import StatusSpace
from rides.translator import translate
from shared.bus import EventBus
from shared.errors import StreamDisruption
from shared.events.rides import DomainEvent, RideEventKind

logger = structlog.get_logger(__name__)

PROGRESS_STATUS = FieldInterest(
    "progress-status", RIDES_COLLECTION, frozenset({Operation.UPDATE}), frozenset({StatusSpace.PROGRESS.value})
)
WORKFLOW_STATUS = FieldInterest(
    "workflow-status", RIDES_COLLECTION, frozenset({Operation.UPDATE}), frozenset({StatusSpace.WORKFLOW.value})
)
RIDE_INSERTS = FieldInterest("ride-inserts", RIDES_COLLECTION, frozenset({Operation.INSERT}))
ASSIGNMENTS = FieldInterest(
    "assignments",
    RIDES_COLLECTION,
    frozenset({Operation.UPDATE}),
    frozenset({"assignedDriverUuid", "assignedVehicleUuid"}),
)
USER_AUDIT = FieldInterest(
    "user-audit", SERVICE_USERS_COLLECTION, frozenset({Operation.INSERT, Operation.UPDATE}), passive=True
)
PROVIDER_AUDIT = FieldInterest(
    "provider-audit", SERVICE_PROVIDERS_COLLECTION, frozenset({Operation.INSERT, Operation.UPDATE}), passive=True
)

SUBSCRIPTIONS = (PROGRESS_STATUS, WORKFLOW_STATUS, RIDE_INSERTS, ASSIGNMENTS, USER_AUDIT, PROVIDER_AUDIT)

_ASSIGNMENT_KINDS = {
    "assignedDriverUuid": (RideEventKind.DRIVER_ASSIGNED, "driver_id"),
    "assignedVehicleUuid": (RideEventKind.VEHICLE_ASSIGNED, "vehicle_id"),
}


class ChangeEventSource:
    def __init__(
        self,
        feed: ChangeFeed,
        rides: RideDocumentStore,
        bus: EventBus,
        tokens: ResumeTokenStore | None = None,
        subscriptions: tuple[FieldInterest, ...] = SUBSCRIPTIONS,
        reconnect_initial: float = 1.0,
        reconnect_max: float = 60.0,
        reconnect_attempts: int = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._feed = feed
        self._rides = rides
        self._bus = bus
        self._tokens = tokens
        self.subscriptions = subscriptions
        self._reconnect_initial = reconnect_initial
        self._reconnect_max = reconnect_max
        self._reconnect_attempts = reconnect_attempts
        self._sleep = sleep
        self._positions: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._handlers = {
            PROGRESS_STATUS.name: self._on_progress_status,
            WORKFLOW_STATUS.name: self._on_workflow_status,
            RIDE_INSERTS.name: self._on_ride_inserted,
            ASSIGNMENTS.name: self._on_assignment,
        }

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    @property
    def running(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def start(self) -> None:
        for interest in self.subscriptions:
            task = self._tasks.get(interest.name)
            if task is not None and not task.done():
                continue
            self._tasks[interest.name] = asyncio.create_task(self._consume(interest), name=f"feed:{interest.name}")
        logger.info("Change detection started", subscriptions=[s.name for s in self.subscriptions])

    async def stop(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
        logger.info("Change detection stopped")

    # -------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------
    async def subscribe(self, interest: FieldInterest) -> AsyncIterator[RawChange]:
        """Yield changes for ``interest`` for as long as the feed can be reached.

        On disconnect the subscription is reopened after the last recorded
        position. After ``reconnect_attempts`` consecutive failed attempts the
        iterator ends; a stream that opens successfully resets the count.
        """
        failures = 0

        def opened():
            nonlocal failures
            failures = 0

        while True:
            resume_after = await self._position(interest.name)
            if resume_after is None:
                # Anchor at the current head so a later reconnect replays from here
                resume_after = await self._feed.latest_token()
                if resume_after is not None:
                    self._positions[interest.name] = resume_after
            try:
                async for change in self._feed.watch(interest, resume_after, on_open=opened):
                    yield change
                logger.info("Change feed closed", subscription=interest.name)
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                disruption = StreamDisruption(interest.name, exc)
                failures += 1
                if failures > self._reconnect_attempts:
                    logger.error(
                        "Change feed subscription abandoned",
                        subscription=interest.name,
                        attempts=failures - 1,
                        error=str(disruption),
                    )
                    return
                delay = min(self._reconnect_initial * 2 ** (failures - 1), self._reconnect_max)
                logger.warning(
                    "Change feed disrupted, reconnecting",
                    subscription=interest.name,
                    attempt=failures,
                    delay=delay,
                    resume_after=resume_after,
                    error=str(exc),
                )
                await self._sleep(delay)

    async def _consume(self, interest: FieldInterest) -> None:
        async for change in self.subscribe(interest):
            try:
                await self.handle(interest, change)
            except Exception:
                logger.exception(
                    "Failed to handle change",
                    subscription=interest.name,
                    document_key=change.document_key,
                )
            await self._remember(interest.name, change.resume_token)

    async def _position(self, name: str) -> str | None:
        if name in self._positions:
            return self._positions[name]
        if self._tokens is not None:
            return await self._tokens.load(name)
        return None

    async def _remember(self, name: str, token: str) -> None:
        self._positions[name] = token
        if self._tokens is not None:
            try:
                await self._tokens.save(name, token)
            except Exception:
                logger.exception("Failed to persist resume token", subscription=name, token=token)

    # -------------------------------------------------------------------
    # Change handling
    # -------------------------------------------------------------------
    async def handle(self, interest: FieldInterest, change: RawChange) -> list[DomainEvent]:
        """Translate one change and publish the resulting events."""
        if interest.passive:
            logger.info(
                "Audit change observed",
                subscription=interest.name,
                collection=change.collection,
                document_key=change.document_key,
                operation=change.operation.value,
                fields=sorted(change.updated_fields),
            )
            return []

        handler = self._handlers.get(interest.name)
        if handler is None:
            logger.warning("No handler for subscription", subscription=interest.name)
            return []

        events = [
            event.model_copy(update={"attributes": {**event.attributes, "change_id": change.resume_token}})
            for event in await handler(change)
        ]
        for event in events:
            await self._bus.publish(event.kind, event)
        return events

    async def _load(self, change: RawChange) -> RideDocument | None:
        document = await self._rides.get(change.document_key)
        if document is None:
            logger.warning("Ride document not found", ride_id=change.document_key)
        return document

    async def _on_status(self, space: StatusSpace, change: RawChange) -> list[DomainEvent]:
        document = await self._load(change)
        if document is None:
            return []
        event = translate(
            space,
            change.previous_fields.get(space.value),
            change.updated_fields.get(space.value),
            document,
        )
        return [event] if event is not None else []

    async def _on_progress_status(self, change: RawChange) -> list[DomainEvent]:
        return await self._on_status(StatusSpace.PROGRESS, change)

    async def _on_workflow_status(self, change: RawChange) -> list[DomainEvent]:
        return await self._on_status(StatusSpace.WORKFLOW, change)

    async def _on_ride_inserted(self, change: RawChange) -> list[DomainEvent]:
        if change.full_document is not None:
            document = RideDocument.model_validate(change.full_document)
        else:
            document = await self._load(change)
            if document is None:
                return []

        logger.info("New ride request detected", ride_id=document.uuid)
        return [
            DomainEvent(
                kind=RideEventKind.REQUEST_CREATED,
                correlation_id=document.uuid,
                subject_id=document.service_user_uuid,
                occurred_at=datetime.now(UTC),
                attributes={
                    "pickup_address": document.pickup_address,
                    "dropoff_address": document.dropoff_address,
                    "pickup_time": _isoformat(document.pickup_requested_time),
                    "purpose": document.purpose,
                    "round_trip": document.round_trip,
                },
            )
        ]

    async def _on_assignment(self, change: RawChange) -> list[DomainEvent]:
        document = await self._load(change)
        if document is None:
            return []

        events = []
        for path, (kind, attribute) in _ASSIGNMENT_KINDS.items():
            value = change.updated_fields.get(path)
            if not change.changed(path) or value is None:
                continue
            attributes = {attribute: str(value)}
            if document.assigned_driver_uuid is not None:
                attributes.setdefault("driver_id", document.assigned_driver_uuid)
            events.append(
                DomainEvent(
                    kind=kind,
                    correlation_id=document.uuid,
                    subject_id=document.service_user_uuid,
                    occurred_at=datetime.now(UTC),
                    attributes=attributes,
                )
            )
            logger.info("Assignment detected", ride_id=document.uuid, kind=kind.value, **{attribute: str(value)})
        return events


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
