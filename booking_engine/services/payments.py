"""Payment intent orchestration: create, confirm and refund card payments.

One provider-side payment intent per booking. The intent id is written to
the booking exactly once through the state machine; a second attempt fails
with StateConflictError instead of opening another provider transaction.
Transfer and cash bookings never reach this module: they are confirmed by
hand through the state machine.
"""

import logging
from dataclasses import dataclass

from booking_engine.core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from booking_engine.models.base import utcnow
from booking_engine.models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from booking_engine.repositories.bookings import BookingRepository, NotFound
from booking_engine.services.access_guard import Identity, ensure_provider_or_admin, ensure_requester
from booking_engine.services.payment_provider import IntentOutcome, PaymentProvider
from booking_engine.services.state_machine import BookingStateMachine, plan_refund

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntentCreated:
    client_secret: str | None
    payment_intent_id: str


@dataclass(frozen=True)
class ConfirmationResult:
    provider_status: str
    booking: Booking
    applied: bool = False


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount: int
    status: str
    booking: Booking


def _reflects(booking: Booking, outcome: IntentOutcome) -> bool:
    if outcome == IntentOutcome.SUCCEEDED:
        return booking.payment_status == PaymentStatus.PAID
    if outcome == IntentOutcome.FAILED:
        return booking.payment_status == PaymentStatus.FAILED
    return False


class PaymentOrchestrator:
    def __init__(
        self,
        repository: BookingRepository,
        state_machine: BookingStateMachine,
        provider: PaymentProvider,
    ):
        self._repository = repository
        self._state_machine = state_machine
        self._provider = provider

    async def _load(self, booking_id: str) -> Booking:
        booking = await self._repository.get(booking_id)
        if isinstance(booking, NotFound):
            raise NotFoundError("Booking not found")
        return booking

    async def create_intent(
        self,
        booking_id: str,
        actor: Identity,
        requested_amount: int,
        currency: str,
        metadata: dict[str, str] | None = None,
    ) -> IntentCreated:
        booking = await self._load(booking_id)
        ensure_requester(booking, actor)

        if booking.payment_method != PaymentMethod.CARD:
            raise ValidationError(f"Bookings paid by {booking.payment_method.value} do not take online payment")
        if requested_amount != booking.total_amount:
            raise ValidationError("Payment amount does not match the booking total")
        if currency.upper() != booking.currency.upper():
            raise ValidationError("Payment currency does not match the booking currency")
        if booking.status == BookingStatus.CANCELLED:
            raise StateConflictError("A cancelled booking cannot be paid")
        if booking.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            raise StateConflictError("This booking has already been paid")
        if booking.payment_intent_id is not None:
            raise StateConflictError("A payment has already been initiated for this booking")

        intent_metadata = {key: str(value) for key, value in (metadata or {}).items()}
        intent_metadata["booking_id"] = booking.id
        intent = await self._provider.create_intent(booking.total_amount, booking.currency, intent_metadata)

        try:
            await self._state_machine.transition_payment(booking.id, PaymentStatus.PENDING, external_ref=intent.id)
        except StateConflictError:
            # Lost the write-once race to a concurrent request
            await self._discard_intent(intent.id)
            raise

        logger.info(
            "Payment intent %s created for booking %s (%d %s)",
            intent.id,
            booking.id,
            booking.total_amount,
            booking.currency,
        )
        return IntentCreated(client_secret=intent.client_secret, payment_intent_id=intent.id)

    async def _discard_intent(self, intent_id: str) -> None:
        try:
            await self._provider.cancel_intent(intent_id)
        except ExternalServiceError as exc:
            logger.warning("Could not cancel orphaned payment intent %s: %s", intent_id, exc.message)
        else:
            logger.info("Cancelled orphaned payment intent %s", intent_id)

    async def confirm_intent(self, intent_id: str, actor: Identity) -> ConfirmationResult:
        """Pull the provider-side status and apply it. In-flight payments are a no-op."""
        booking = await self._repository.find_by_payment_intent(intent_id)
        if isinstance(booking, NotFound):
            raise NotFoundError("No booking is linked to this payment")
        ensure_requester(booking, actor)

        intent = await self._provider.retrieve_intent(intent_id)
        outcome = intent.outcome

        applied = False
        if not _reflects(booking, outcome):
            try:
                updated = await self.apply_intent_outcome(booking.id, outcome)
            except StateConflictError:
                # A webhook may have applied the same outcome in the meantime
                booking = await self._load(booking.id)
                if not _reflects(booking, outcome):
                    raise
            else:
                if updated is not None:
                    booking, applied = updated, True

        return ConfirmationResult(provider_status=intent.status, booking=booking, applied=applied)

    async def apply_intent_outcome(self, booking_id: str, outcome: IntentOutcome) -> Booking | None:
        if outcome == IntentOutcome.SUCCEEDED:
            return await self._state_machine.transition_payment(booking_id, PaymentStatus.PAID)
        if outcome == IntentOutcome.FAILED:
            return await self._state_machine.transition_payment(booking_id, PaymentStatus.FAILED)
        return None

    async def refund(
        self,
        booking_id: str,
        actor: Identity,
        amount: int | None = None,
        reason: str | None = None,
    ) -> RefundResult:
        booking = await self._load(booking_id)
        ensure_provider_or_admin(booking, actor)
        return await self.refund_booking(booking, amount, reason)

    async def refund_booking(
        self, booking: Booking, amount: int | None = None, reason: str | None = None
    ) -> RefundResult:
        """Refund through the provider, then mark refunded and cancelled in one write."""
        if booking.payment_status != PaymentStatus.PAID:
            raise ValidationError("Only a paid booking can be refunded")
        if booking.payment_intent_id is None:
            raise ValidationError("This booking has no online payment to refund")

        refund_amount = booking.total_amount if amount is None else amount
        if refund_amount <= 0 or refund_amount > booking.total_amount:
            raise ValidationError("Refund amount must be positive and no more than the amount paid")
        # A completed booking cannot be refunded; check before the provider is called
        plan_refund(booking, utcnow(), reason)

        refund = await self._provider.create_refund(booking.payment_intent_id, refund_amount, reason)
        updated = await self._state_machine.refund_and_cancel(booking.id, reason)

        logger.info("Refund %s of %d issued for booking %s", refund.id, refund.amount, booking.id)
        return RefundResult(refund_id=refund.id, amount=refund.amount, status=refund.status, booking=updated)
