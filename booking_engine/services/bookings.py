"""Booking lifecycle service: create, read, list, update and cancel.

Route handlers call into this service; it runs the access guard first and
delegates every status or payment change to the state machine or the payment
orchestrator.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from booking_engine.core.config import Settings
from booking_engine.core.exceptions import NotFoundError, StateConflictError, ValidationError
from booking_engine.models.base import utcnow
from booking_engine.models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from booking_engine.repositories.bookings import BookingRepository, NotFound, PartyRole
from booking_engine.repositories.offerings import OfferingRepository
from booking_engine.services.access_guard import (
    BookingRole,
    Identity,
    ensure_access,
    ensure_can_list,
    ensure_can_transition,
)
from booking_engine.services.payments import PaymentOrchestrator
from booking_engine.services.pricing import price_booking
from booking_engine.services.refunds import CancellationPolicy, RefundCalculation, compute_refund
from booking_engine.services.state_machine import BookingStateMachine, plan_notes_change

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = "Cancelled by user"


class BookingService:
    def __init__(
        self,
        repository: BookingRepository,
        offerings: OfferingRepository,
        state_machine: BookingStateMachine,
        payments: PaymentOrchestrator,
        policy: CancellationPolicy,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repository = repository
        self._offerings = offerings
        self._state_machine = state_machine
        self._payments = payments
        self._policy = policy
        self._settings = settings
        self._clock = clock

    async def create_booking(
        self,
        requester: Identity,
        *,
        offering_id: str,
        participant_count: int,
        scheduled_at: datetime,
        duration_minutes: int,
        payment_method: PaymentMethod,
        contact_name: str,
        contact_email: str,
        contact_phone: str,
        special_requests: str | None = None,
    ) -> Booking:
        offering = await self._offerings.get_active(offering_id)
        if offering is None:
            raise NotFoundError("Offering not found")
        if offering.provider_id == requester.user_id:
            raise ValidationError("You cannot book your own offering")
        if scheduled_at <= self._clock():
            raise ValidationError("The scheduled time must be in the future")

        pricing = price_booking(offering.unit_price, participant_count, self._settings)

        booking = Booking(
            offering_id=offering.id,
            provider_id=offering.provider_id,
            requester_id=requester.user_id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            participant_count=participant_count,
            base_amount=pricing.base_amount,
            tax_amount=pricing.tax,
            platform_fee=pricing.platform_fee,
            payment_fee=pricing.payment_fee,
            total_amount=pricing.total_amount,
            currency=offering.currency or self._settings.default_currency,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            status=BookingStatus.PENDING,
            student_notes=special_requests,
            contact_name=contact_name,
            contact_email=contact_email,
            contact_phone=contact_phone,
        )
        booking = await self._repository.add(booking)
        logger.info(
            "Booking %s created by %s for offering %s (total %d %s)",
            booking.id,
            requester.user_id,
            offering.id,
            booking.total_amount,
            booking.currency,
        )
        return booking

    async def get_booking(self, booking_id: str, identity: Identity) -> Booking:
        booking = await self._repository.get(booking_id)
        if isinstance(booking, NotFound):
            raise NotFoundError("Booking not found")
        ensure_access(booking, identity)
        return booking

    async def list_bookings(self, identity: Identity, role: PartyRole, user_id: str | None = None) -> list[Booking]:
        target = user_id or identity.user_id
        ensure_can_list(identity, target)
        return await self._repository.list_for_party(target, role)

    async def update_booking(
        self,
        booking_id: str,
        identity: Identity,
        status: BookingStatus | None = None,
        student_notes: str | None = None,
        teacher_notes: str | None = None,
    ) -> Booking:
        booking = await self.get_booking(booking_id, identity)

        if status != BookingStatus.CANCELLED:
            return await self._state_machine.update(
                booking_id, identity, status, student_notes=student_notes, teacher_notes=teacher_notes
            )

        # Reject unauthorised notes before the cancellation moves any money
        notes = plan_notes_change(booking, identity, student_notes, teacher_notes)
        booking, _ = await self.cancel_booking(booking_id, identity)
        if notes:
            booking = await self._state_machine.update(
                booking_id, identity, student_notes=student_notes, teacher_notes=teacher_notes
            )
        return booking

    async def cancel_booking(
        self,
        booking_id: str,
        identity: Identity,
        reason: str | None = None,
    ) -> tuple[Booking, RefundCalculation]:
        """Cancel and refund according to the cancellation policy.

        A positive refund on a captured card payment goes through the
        provider and lands as one combined refunded+cancelled write; anything
        else is a plain cancellation.
        """
        booking = await self.get_booking(booking_id, identity)
        role = ensure_can_transition(booking, identity, BookingStatus.CANCELLED)
        if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
            raise StateConflictError(f"A {booking.status.value} booking cannot be cancelled")

        reason = reason or DEFAULT_CANCELLATION_REASON
        calculation = compute_refund(
            booking,
            now=self._clock(),
            actor_is_provider=role == BookingRole.PROVIDER,
            policy=self._policy,
        )

        if (
            calculation.refund_amount > 0
            and booking.payment_method == PaymentMethod.CARD
            and booking.payment_intent_id is not None
        ):
            result = await self._payments.refund_booking(booking, calculation.refund_amount, reason)
            booking = result.booking
        else:
            booking = await self._state_machine.transition_status(
                booking_id, BookingStatus.CANCELLED, identity, reason=reason
            )

        logger.info(
            "Booking %s cancelled by %s (%s), refund %d of %d",
            booking_id,
            identity.user_id,
            role.value,
            calculation.refund_amount,
            calculation.original_amount,
        )
        return booking, calculation
