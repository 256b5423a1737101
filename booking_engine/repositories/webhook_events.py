"""Idempotency ledger: the set of provider event ids already handled."""

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.models.webhook_event import ProcessedWebhookEvent

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def contains(self, event_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ProcessedWebhookEvent.event_id).where(ProcessedWebhookEvent.event_id == event_id)
            )
            return result.scalar_one_or_none() is not None

    async def record(self, event_id: str, event_type: str, booking_id: str | None, outcome: str) -> bool:
        """Insert the event id. Returns False when another delivery recorded it first."""
        async with self._session_factory() as db:
            db.add(
                ProcessedWebhookEvent(
                    event_id=event_id,
                    event_type=event_type,
                    booking_id=booking_id,
                    outcome=outcome,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
            return True

    async def purge(self, older_than: datetime) -> int:
        """Delete entries processed before ``older_than``. Returns the number removed."""
        async with self._session_factory() as db:
            result = await db.execute(
                delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.processed_at < older_than)
            )
            await db.commit()
        logger.info("Purged %d processed webhook events older than %s", result.rowcount, older_than.isoformat())
        return result.rowcount
