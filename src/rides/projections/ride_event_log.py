"""RideEventLog — every ride event, in the order it was published."""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import JSON, DateTime, Integer, String, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from shared.bus import EventBus
from shared.events.rides import DomainEvent
from shared.utils.db import Base, session_scope

logger = structlog.get_logger(__name__)


class RideEventRecord(Base):
    __tablename__ = "ride_event_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ride_id: Mapped[str] = mapped_column(String(100), index=True)
    subject_id: Mapped[str] = mapped_column(String(100))
    kind: Mapped[str] = mapped_column(String(50))
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


class RideEventLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def register(self, bus: EventBus) -> None:
        bus.subscribe_all(self.record)

    async def record(self, event: DomainEvent) -> None:
        async with session_scope(self._session_factory) as session:
            session.add(
                RideEventRecord(
                    ride_id=event.correlation_id,
                    subject_id=event.subject_id,
                    kind=event.kind.value,
                    occurred_at=event.occurred_at,
                    attributes=event.model_dump(mode="json")["attributes"],
                )
            )

    async def history(self, ride_id: str) -> list[dict]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RideEventRecord).where(RideEventRecord.ride_id == ride_id).order_by(RideEventRecord.id)
            )
            return [
                {
                    "kind": record.kind,
                    "ride_id": record.ride_id,
                    "subject_id": record.subject_id,
                    "occurred_at": record.occurred_at,
                    "attributes": record.attributes,
                }
                for record in result.scalars()
            ]
