"""Shared test fixtures."""

import hashlib
import hmac
import itertools
import json
import os
import time
from dataclasses import replace
from datetime import timedelta

os.environ.setdefault("BOOKING_DATABASE_URL", "sqlite+aiosqlite:///./test_booking.db")
os.environ.setdefault("BOOKING_STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("BOOKING_NOTIFICATIONS_ENABLED", "false")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from booking_engine.core.auth import create_access_token  # noqa: E402
from booking_engine.core.config import settings  # noqa: E402
from booking_engine.core.exceptions import ExternalServiceError  # noqa: E402
from booking_engine.main import app  # noqa: E402
from booking_engine.models import Offering, PaymentMethod  # noqa: E402
from booking_engine.models.base import utcnow  # noqa: E402
from booking_engine.services.access_guard import Identity  # noqa: E402
from booking_engine.services.container import BookingServices  # noqa: E402
from booking_engine.services.payment_provider import ProviderIntent, ProviderRefund  # noqa: E402

PROVIDER_ID = "teacher-1"
REQUESTER_ID = "student-1"
OTHER_ID = "stranger-1"
ADMIN_ID = "admin-1"

WEBHOOK_SECRET = os.environ["BOOKING_STRIPE_WEBHOOK_SECRET"]


class FakePaymentProvider:
    """In-memory stand-in for the payment provider."""

    def __init__(self):
        self.intents: dict[str, ProviderIntent] = {}
        self.created: list[str] = []
        self.cancelled: list[str] = []
        self.refunds: list[tuple[str, int, str | None]] = []
        self.closed = False
        self._ids = itertools.count(1)

    async def create_intent(self, amount, currency, metadata):
        intent_id = f"pi_test_{next(self._ids)}"
        intent = ProviderIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_abc",
            status="requires_payment_method",
            amount=amount,
            booking_id=metadata.get("booking_id"),
        )
        self.intents[intent_id] = intent
        self.created.append(intent_id)
        return intent

    async def retrieve_intent(self, intent_id):
        if intent_id not in self.intents:
            raise ExternalServiceError("No such payment intent", retryable=False)
        return self.intents[intent_id]

    async def cancel_intent(self, intent_id):
        self.cancelled.append(intent_id)
        self.set_status(intent_id, "canceled")

    async def create_refund(self, intent_id, amount, reason):
        self.refunds.append((intent_id, amount, reason))
        return ProviderRefund(id=f"re_test_{len(self.refunds)}", amount=amount, status="succeeded")

    async def close(self):
        self.closed = True

    def set_status(self, intent_id: str, status: str, has_payment_error: bool = False) -> None:
        self.intents[intent_id] = replace(self.intents[intent_id], status=status, has_payment_error=has_payment_error)


@pytest.fixture
def fake_provider():
    return FakePaymentProvider()


@pytest.fixture
async def services(tmp_path, fake_provider):
    """A fresh service graph over a throwaway SQLite database."""
    test_settings = settings.model_copy(
        update={
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}",
            "auto_create_tables": True,
        }
    )
    container = BookingServices(test_settings, provider=fake_provider)
    await container.startup()
    yield container
    await container.shutdown()


@pytest.fixture
async def client(services):
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def offering(services):
    async with services.session_factory() as db:
        item = Offering(provider_id=PROVIDER_ID, title="Beginner surf lesson", unit_price=3000, currency="JPY")
        db.add(item)
        await db.commit()
        return item


def auth_headers(user_id: str, admin: bool = False) -> dict[str, str]:
    extra = {"admin": True} if admin else None
    return {"Authorization": f"Bearer {create_access_token(user_id, extra)}"}


requester = Identity(REQUESTER_ID)
provider = Identity(PROVIDER_ID)
stranger = Identity(OTHER_ID)
admin = Identity(ADMIN_ID, is_admin=True)


async def make_booking(services, offering, method=PaymentMethod.CARD, hours_ahead=48, participants=1):
    return await services.booking_service.create_booking(
        requester,
        offering_id=offering.id,
        participant_count=participants,
        scheduled_at=utcnow() + timedelta(hours=hours_ahead),
        duration_minutes=60,
        payment_method=method,
        contact_name="Aiko Tanaka",
        contact_email="aiko@example.com",
        contact_phone="+81 90-1234-5678",
    )


async def pay_booking(services, fake_provider, booking):
    """Run the card flow to completion: intent, provider success, confirm."""
    created = await services.payments.create_intent(booking.id, requester, booking.total_amount, booking.currency)
    fake_provider.set_status(created.payment_intent_id, "succeeded")
    result = await services.payments.confirm_intent(created.payment_intent_id, requester)
    return result.booking


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a provider-format signature header: ``t=<ts>,v1=<hmac>``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def webhook_event(event_id: str, event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}).encode()
