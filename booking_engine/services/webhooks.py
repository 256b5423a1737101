"""Payment provider webhook reconciliation.

Deliveries are at-least-once and may arrive late, duplicated or out of order.
Each one is verified against the signing secret, de-duplicated by event id
and only then mapped onto a state machine transition. The event id is written
to the ledger after the transition is durable, so a crash in between leads to
a redelivery instead of a lost update.
"""

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any

import stripe

from booking_engine.core.exceptions import (
    ConfigurationError,
    ServiceUnavailableError,
    StateConflictError,
    ValidationError,
)
from booking_engine.models.booking import Booking
from booking_engine.repositories.bookings import BookingRepository, NotFound
from booking_engine.repositories.webhook_events import IdempotencyLedger
from booking_engine.services.payment_provider import IntentOutcome
from booking_engine.services.payments import PaymentOrchestrator

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"

# Logged for audit only, the refund itself is driven by an explicit API call
AUDIT_EVENT_PREFIXES = ("charge.refund", "charge.dispute.", "refund.")


class ReconcileOutcome(enum.StrEnum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    AUDITED = "audited"
    IGNORED = "ignored"
    STALE = "stale"


@dataclass(frozen=True)
class ReconcileResult:
    event_id: str
    event_type: str
    outcome: ReconcileOutcome
    booking: Booking | None = None


class WebhookReconciler:
    def __init__(
        self,
        ledger: IdempotencyLedger,
        repository: BookingRepository,
        payments: PaymentOrchestrator,
        webhook_secret: str,
        tolerance_seconds: int = 300,
    ):
        self._ledger = ledger
        self._repository = repository
        self._payments = payments
        self._secret = webhook_secret
        self._tolerance = tolerance_seconds

    def verify(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Check the provider signature and parse the event. Fails closed."""
        if not self._secret:
            raise ConfigurationError("Webhook signing secret is not configured")
        if not signature:
            raise ValidationError("Missing webhook signature")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self._secret, self._tolerance)
        except (UnicodeDecodeError, stripe.SignatureVerificationError):
            raise ValidationError("Invalid webhook signature") from None

        try:
            event = json.loads(body)
        except json.JSONDecodeError:
            raise ValidationError("Malformed webhook payload") from None
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise ValidationError("Malformed webhook payload")
        return event

    async def handle(self, payload: bytes, signature: str | None) -> ReconcileResult:
        event = self.verify(payload, signature)
        event_id = event["id"]
        event_type = event["type"]

        if await self._ledger.contains(event_id):
            logger.info("Webhook event %s (%s) already processed, skipping", event_id, event_type)
            return ReconcileResult(event_id, event_type, ReconcileOutcome.DUPLICATE)

        obj = event.get("data", {}).get("object", {}) or {}
        outcome, booking = await self._dispatch(event_id, event_type, obj)

        recorded = await self._ledger.record(
            event_id,
            event_type,
            booking.id if booking is not None else None,
            outcome.value,
        )
        if not recorded:
            logger.info("Webhook event %s was recorded by a concurrent delivery", event_id)
            return ReconcileResult(event_id, event_type, ReconcileOutcome.DUPLICATE, booking)

        logger.info("Webhook event %s (%s) -> %s", event_id, event_type, outcome.value)
        return ReconcileResult(event_id, event_type, outcome, booking)

    async def _dispatch(
        self, event_id: str, event_type: str, obj: dict[str, Any]
    ) -> tuple[ReconcileOutcome, Booking | None]:
        if event_type == PAYMENT_SUCCEEDED:
            return await self._apply_outcome(event_id, obj, IntentOutcome.SUCCEEDED)
        if event_type == PAYMENT_FAILED:
            return await self._apply_outcome(event_id, obj, IntentOutcome.FAILED)
        if event_type.startswith(AUDIT_EVENT_PREFIXES):
            booking = await self._booking_for_intent(obj.get("payment_intent"))
            logger.info(
                "Audit: %s %s on intent %s (booking %s, amount %s)",
                event_type,
                obj.get("id"),
                obj.get("payment_intent"),
                booking.id if booking is not None else None,
                obj.get("amount"),
            )
            return ReconcileOutcome.AUDITED, booking

        logger.debug("Ignoring webhook event type %s", event_type)
        return ReconcileOutcome.IGNORED, None

    async def _booking_for_intent(self, intent_id: str | None) -> Booking | None:
        if not intent_id:
            return None
        booking = await self._repository.find_by_payment_intent(intent_id)
        return None if isinstance(booking, NotFound) else booking

    async def _apply_outcome(
        self, event_id: str, intent: dict[str, Any], outcome: IntentOutcome
    ) -> tuple[ReconcileOutcome, Booking | None]:
        intent_id = intent.get("id")
        booking = await self._booking_for_intent(intent_id)

        if booking is None:
            metadata_booking_id = (intent.get("metadata") or {}).get("booking_id")
            if metadata_booking_id:
                pending = await self._repository.get(metadata_booking_id)
                if not isinstance(pending, NotFound) and pending.payment_intent_id is None:
                    # The intent reference has not been persisted yet; let the provider retry
                    raise ServiceUnavailableError(f"Booking {pending.id} is not yet linked to intent {intent_id}")
            logger.warning("Webhook event %s refers to unknown payment intent %s", event_id, intent_id)
            return ReconcileOutcome.IGNORED, None

        try:
            updated = await self._payments.apply_intent_outcome(booking.id, outcome)
        except StateConflictError as exc:
            logger.warning("Stale webhook event %s for booking %s: %s", event_id, booking.id, exc.message)
            return ReconcileOutcome.STALE, booking

        return ReconcileOutcome.PROCESSED, updated or booking
