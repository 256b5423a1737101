"""Explicitly constructed service graph with a startup/shutdown lifecycle.

The FastAPI lifespan builds one ``BookingServices`` from settings and stores
it on ``app.state.services``; tests build their own with a fake provider.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from booking_engine.core.config import Settings
from booking_engine.core.database import build_engine, build_session_factory
from booking_engine.models import Base
from booking_engine.models.base import utcnow
from booking_engine.repositories.bookings import BookingRepository
from booking_engine.repositories.offerings import OfferingRepository
from booking_engine.repositories.webhook_events import IdempotencyLedger
from booking_engine.services.bookings import BookingService
from booking_engine.services.email import BookingNotifier
from booking_engine.services.payment_provider import PaymentProvider, StripePaymentProvider
from booking_engine.services.payments import PaymentOrchestrator
from booking_engine.services.refunds import CancellationPolicy
from booking_engine.services.state_machine import BookingStateMachine
from booking_engine.services.webhooks import WebhookReconciler

logger = logging.getLogger(__name__)


class BookingServices:
    def __init__(
        self,
        settings: Settings,
        provider: PaymentProvider | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.engine = build_engine(settings)
        self.session_factory = build_session_factory(self.engine)

        self.bookings = BookingRepository(self.session_factory)
        self.offerings = OfferingRepository(self.session_factory)
        self.ledger = IdempotencyLedger(self.session_factory)

        self.provider: PaymentProvider = provider or StripePaymentProvider(
            settings.stripe_secret_key,
            timeout_seconds=settings.payment_provider_timeout_seconds,
        )
        self.policy = CancellationPolicy.from_settings(settings)

        self.state_machine = BookingStateMachine(
            self.bookings, max_attempts=settings.optimistic_max_attempts, clock=clock
        )
        self.payments = PaymentOrchestrator(self.bookings, self.state_machine, self.provider)
        self.booking_service = BookingService(
            self.bookings,
            self.offerings,
            self.state_machine,
            self.payments,
            self.policy,
            settings,
            clock=clock,
        )
        self.reconciler = WebhookReconciler(
            self.ledger,
            self.bookings,
            self.payments,
            settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )
        self.notifier = BookingNotifier(settings)

    async def startup(self) -> None:
        if self.settings.auto_create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("Booking services started (database %s)", self.engine.url.render_as_string(hide_password=True))

    async def shutdown(self) -> None:
        await self.provider.close()
        await self.engine.dispose()
        logger.info("Booking services stopped")
