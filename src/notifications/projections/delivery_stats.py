"""DeliveryStats — daily delivery outcome counts from provider receipts."""

from datetime import date, datetime

from sqlalchemy import DateTime, Integer, String, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from shared.utils.db import Base, session_scope


class DeliveryStats(Base):
    __tablename__ = "delivery_stats"

    date: Mapped[str] = mapped_column(String(10), primary_key=True)  # "YYYY-MM-DD"
    total: Mapped[int] = mapped_column(Integer, default=0)
    delivered: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class DeliveryStatsProjection:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, delivered: bool, observed_at: datetime) -> None:
        """Count one final delivery outcome on the day it was observed."""
        day = observed_at.strftime("%Y-%m-%d")
        column = "delivered" if delivered else "failed"
        increments = {
            "total": DeliveryStats.total + 1,
            column: getattr(DeliveryStats, column) + 1,
            "updated_at": observed_at,
        }

        for _ in range(2):
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    update(DeliveryStats).where(DeliveryStats.date == day).values(**increments),
                    execution_options={"synchronize_session": False},
                )
            if result.rowcount == 1:
                return
            try:
                async with session_scope(self._session_factory) as session:
                    session.add(
                        DeliveryStats(
                            date=day,
                            total=1,
                            delivered=int(delivered),
                            failed=int(not delivered),
                            updated_at=observed_at,
                        )
                    )
                return
            except IntegrityError:
                # Row created concurrently; increment it instead
                continue

    async def for_day(self, day: date | str) -> dict:
        key = day if isinstance(day, str) else day.strftime("%Y-%m-%d")
        async with self._session_factory() as session:
            stats = await session.get(DeliveryStats, key)
        if stats is None:
            return {"date": key, "total": 0, "delivered": 0, "failed": 0}
        return {"date": key, "total": stats.total, "delivered": stats.delivered, "failed": stats.failed}
