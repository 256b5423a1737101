"""Read-only access to offerings published by the discovery layer."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.models.offering import Offering


class OfferingRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_active(self, offering_id: str) -> Offering | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Offering).where(Offering.id == offering_id, Offering.is_active.is_(True))
            )
            return result.scalar_one_or_none()
