"""Persisted change-feed positions, one row per subscription."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, String, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from shared.utils.db import Base, session_scope


class ChangeFeedPosition(Base):
    __tablename__ = "change_feed_positions"

    subscription: Mapped[str] = mapped_column(String(100), primary_key=True)
    resume_token: Mapped[str] = mapped_column(String(500))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ResumeTokenStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, subscription: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChangeFeedPosition.resume_token).where(ChangeFeedPosition.subscription == subscription)
            )
            return result.scalar_one_or_none()

    async def save(self, subscription: str, token: str) -> None:
        async with session_scope(self._session_factory) as session:
            position = await session.get(ChangeFeedPosition, subscription)
            if position is None:
                session.add(
                    ChangeFeedPosition(subscription=subscription, resume_token=token, updated_at=datetime.now(UTC))
                )
            else:
                position.resume_token = token
                position.updated_at = datetime.now(UTC)
