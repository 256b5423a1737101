"""Ledger retention, the Celery purge task and booking notification emails."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest
from fastapi import BackgroundTasks

from booking_engine.models import ProcessedWebhookEvent
from booking_engine.models.base import utcnow
from booking_engine.services.email import BookingEvent, BookingNotifier, render_body
from booking_engine.worker import celery_app, purge_expired_events
from conftest import make_booking, requester


@pytest.mark.asyncio
async def test_ledger_records_each_event_once(services):
    assert await services.ledger.record("evt_1", "payment_intent.succeeded", None, "processed")
    assert not await services.ledger.record("evt_1", "payment_intent.succeeded", None, "processed")
    assert await services.ledger.contains("evt_1")
    assert not await services.ledger.contains("evt_2")


@pytest.mark.asyncio
async def test_purge_removes_only_expired_events(services):
    now = utcnow()
    async with services.session_factory() as db:
        db.add_all(
            [
                ProcessedWebhookEvent(
                    event_id="evt_old", event_type="x", outcome="processed", processed_at=now - timedelta(days=45)
                ),
                ProcessedWebhookEvent(
                    event_id="evt_recent", event_type="x", outcome="processed", processed_at=now - timedelta(days=2)
                ),
            ]
        )
        await db.commit()

    removed = await purge_expired_events(services.ledger, retention_days=30, now=now)
    assert removed == 1
    assert not await services.ledger.contains("evt_old")
    assert await services.ledger.contains("evt_recent")


def test_purge_runs_on_a_beat_schedule():
    schedule = celery_app.conf.beat_schedule["purge-processed-webhook-events"]
    assert schedule["task"] == "booking_engine.worker.purge_processed_webhook_events"


@pytest.mark.asyncio
async def test_notification_is_sent_to_requester(services, offering):
    booking = await make_booking(services, offering)
    notifier = BookingNotifier(services.settings)

    with patch("booking_engine.services.email.aiosmtplib.send", new_callable=AsyncMock) as send:
        await notifier.notify(booking, BookingEvent.CREATED)

    message = send.call_args.args[0]
    assert message["To"] == "aiko@example.com"
    assert message["Subject"] == "Your booking request has been received"
    assert booking.id in message.get_content()


@pytest.mark.asyncio
async def test_mail_failure_is_logged_not_raised(services, offering, caplog):
    booking = await make_booking(services, offering)
    notifier = BookingNotifier(services.settings)

    with patch(
        "booking_engine.services.email.aiosmtplib.send",
        new_callable=AsyncMock,
        side_effect=aiosmtplib.SMTPConnectError("connection refused"),
    ):
        await notifier.notify(booking, BookingEvent.CONFIRMED)

    assert "Failed to send confirmed notification" in caplog.text
    stored = await services.bookings.get(booking.id)
    assert stored.version == booking.version


@pytest.mark.asyncio
async def test_schedule_respects_the_notifications_flag(services, offering):
    booking = await make_booking(services, offering)

    disabled = BookingNotifier(services.settings.model_copy(update={"notifications_enabled": False}))
    tasks = BackgroundTasks()
    disabled.schedule(tasks, booking, BookingEvent.CREATED)
    assert tasks.tasks == []

    enabled = BookingNotifier(services.settings.model_copy(update={"notifications_enabled": True}))
    enabled.schedule(tasks, booking, BookingEvent.CREATED)
    assert len(tasks.tasks) == 1


@pytest.mark.asyncio
async def test_cancellation_mail_includes_reason(services, offering):
    booking = await make_booking(services, offering)
    cancelled, _ = await services.booking_service.cancel_booking(booking.id, requester, "Sick")
    body = render_body(cancelled, BookingEvent.CANCELLED)
    assert "Reason: Sick" in body
