"""Celery worker configuration and housekeeping tasks.

The engine does no polling of its own; the worker only trims the webhook
idempotency ledger on a beat schedule.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from celery import Celery
from celery.schedules import crontab

from booking_engine.core.config import settings
from booking_engine.core.database import build_engine, build_session_factory
from booking_engine.models.base import utcnow
from booking_engine.repositories.webhook_events import IdempotencyLedger

logger = logging.getLogger(__name__)

celery_app = Celery(
    "booking_engine",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "purge-processed-webhook-events": {
            "task": "booking_engine.worker.purge_processed_webhook_events",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)


async def purge_expired_events(ledger: IdempotencyLedger, retention_days: int, now: datetime) -> int:
    return await ledger.purge(now - timedelta(days=retention_days))


async def _purge() -> int:
    engine = build_engine(settings)
    try:
        ledger = IdempotencyLedger(build_session_factory(engine))
        return await purge_expired_events(ledger, settings.webhook_event_retention_days, utcnow())
    finally:
        await engine.dispose()


@celery_app.task(name="booking_engine.worker.purge_processed_webhook_events")
def purge_processed_webhook_events() -> int:
    removed = asyncio.run(_purge())
    logger.info("Ledger retention run removed %d events", removed)
    return removed
