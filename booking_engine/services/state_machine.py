"""Booking state machine.

All legality checks for ``status`` and ``payment_status`` live here so no
caller can produce an invalid combination. Transitions are planned against a
fresh read and written with a conditional update on the booking version; a
version conflict means someone else wrote first, so the booking is re-read
and the plan re-evaluated (never re-applied blindly).

Status graph::

    pending -> confirmed -> completed
       \\          \\
        +-> cancelled <-+          (cancelled and completed are final)

Payment graph::

    pending -> paid -> refunded
       \\        ^
        +-> failed

A payment reaching ``paid`` while the booking is ``pending`` confirms it in
the same write. ``refunded`` cancels the booking in the same write.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from booking_engine.core.exceptions import AuthorizationError, NotFoundError, StateConflictError
from booking_engine.models.base import utcnow
from booking_engine.models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from booking_engine.repositories.bookings import BookingRepository, NotFound, VersionConflict
from booking_engine.services.access_guard import BookingRole, Identity, ensure_access, ensure_can_transition

logger = logging.getLogger(__name__)

Changes = dict[str, Any]

STATUS_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# pending -> pending is only legal when it attaches the external payment reference
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def _cancellation_changes(now: datetime, reason: str | None) -> Changes:
    changes: Changes = {"status": BookingStatus.CANCELLED, "cancelled_at": now}
    if reason:
        changes["cancellation_reason"] = reason
    return changes


def plan_status_change(
    booking: Booking,
    new_status: BookingStatus,
    now: datetime,
    reason: str | None = None,
) -> Changes:
    if new_status not in STATUS_TRANSITIONS[booking.status]:
        raise StateConflictError(f"Cannot change status from '{booking.status.value}' to '{new_status.value}'")

    if (
        new_status == BookingStatus.CONFIRMED
        and booking.payment_method == PaymentMethod.CARD
        and booking.payment_status != PaymentStatus.PAID
    ):
        raise StateConflictError("A card booking cannot be confirmed before its payment is captured")

    if new_status == BookingStatus.CONFIRMED:
        return {"status": new_status, "confirmed_at": now}
    if new_status == BookingStatus.COMPLETED:
        return {"status": new_status, "completed_at": now}
    return _cancellation_changes(now, reason)


def plan_refund(booking: Booking, now: datetime, reason: str | None = None) -> Changes:
    """paid -> refunded, cancelling the booking in the same write if it is still live."""
    if booking.payment_status != PaymentStatus.PAID:
        raise StateConflictError(f"Cannot refund a booking whose payment is '{booking.payment_status.value}'")

    changes: Changes = {"payment_status": PaymentStatus.REFUNDED}
    if booking.status != BookingStatus.CANCELLED:
        if BookingStatus.CANCELLED not in STATUS_TRANSITIONS[booking.status]:
            raise StateConflictError(f"Cannot refund a booking that is '{booking.status.value}'")
        changes.update(_cancellation_changes(now, reason))
    return changes


def plan_payment_change(
    booking: Booking,
    new_payment_status: PaymentStatus,
    now: datetime,
    external_ref: str | None = None,
) -> Changes:
    if new_payment_status == PaymentStatus.REFUNDED:
        return plan_refund(booking, now)

    if booking.status == BookingStatus.CANCELLED:
        raise StateConflictError("The booking is cancelled; its payment can only be refunded")

    if new_payment_status == PaymentStatus.PAID and booking.payment_status in (
        PaymentStatus.PAID,
        PaymentStatus.REFUNDED,
    ):
        raise StateConflictError(f"The booking is already {booking.payment_status.value}")

    if new_payment_status not in PAYMENT_TRANSITIONS[booking.payment_status]:
        raise StateConflictError(
            f"Cannot change payment status from '{booking.payment_status.value}' to '{new_payment_status.value}'"
        )

    changes: Changes = {"payment_status": new_payment_status}

    if external_ref is not None:
        if booking.payment_intent_id is not None:
            raise StateConflictError("A payment has already been initiated for this booking")
        changes["payment_intent_id"] = external_ref
    elif new_payment_status == booking.payment_status == PaymentStatus.PENDING:
        raise StateConflictError("Payment is already pending")

    if new_payment_status == PaymentStatus.PAID and booking.status == BookingStatus.PENDING:
        changes.update(status=BookingStatus.CONFIRMED, confirmed_at=now)

    return changes


def plan_notes_change(
    booking: Booking,
    actor: Identity,
    student_notes: str | None = None,
    teacher_notes: str | None = None,
) -> Changes:
    role = ensure_access(booking, actor)
    changes: Changes = {}
    if teacher_notes is not None:
        if role not in (BookingRole.PROVIDER, BookingRole.ADMIN):
            raise AuthorizationError("Only the provider can edit the teacher notes")
        changes["teacher_notes"] = teacher_notes
    if student_notes is not None:
        if booking.requester_id != actor.user_id and role != BookingRole.ADMIN:
            raise AuthorizationError("Only the requester can edit the student notes")
        changes["student_notes"] = student_notes
    return changes


def _apply_changes(booking: Booking, changes: Changes) -> None:
    for field, value in changes.items():
        setattr(booking, field, value)


class BookingStateMachine:
    def __init__(
        self,
        repository: BookingRepository,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repository = repository
        self._max_attempts = max_attempts
        self._clock = clock

    async def transition_status(
        self,
        booking_id: str,
        new_status: BookingStatus,
        actor: Identity,
        reason: str | None = None,
    ) -> Booking:
        def plan(booking: Booking) -> Changes:
            ensure_can_transition(booking, actor, new_status)
            return plan_status_change(booking, new_status, self._clock(), reason)

        booking = await self._apply(booking_id, plan)
        logger.info("Booking %s status -> %s by %s", booking_id, new_status.value, actor.user_id)
        return booking

    async def transition_payment(
        self,
        booking_id: str,
        new_payment_status: PaymentStatus,
        external_ref: str | None = None,
    ) -> Booking:
        def plan(booking: Booking) -> Changes:
            return plan_payment_change(booking, new_payment_status, self._clock(), external_ref)

        booking = await self._apply(booking_id, plan)
        logger.info(
            "Booking %s payment -> %s (status %s)",
            booking_id,
            new_payment_status.value,
            booking.status.value,
        )
        return booking

    async def refund_and_cancel(self, booking_id: str, reason: str | None = None) -> Booking:
        def plan(booking: Booking) -> Changes:
            return plan_refund(booking, self._clock(), reason)

        booking = await self._apply(booking_id, plan)
        logger.info("Booking %s refunded and cancelled", booking_id)
        return booking

    async def update(
        self,
        booking_id: str,
        actor: Identity,
        new_status: BookingStatus | None = None,
        student_notes: str | None = None,
        teacher_notes: str | None = None,
    ) -> Booking:
        """Notes and an optional non-cancelling status change, committed together or not at all."""

        def plan(booking: Booking) -> Changes:
            changes = plan_notes_change(booking, actor, student_notes, teacher_notes)
            if new_status is not None:
                ensure_can_transition(booking, actor, new_status)
                changes.update(plan_status_change(booking, new_status, self._clock()))
            return changes

        booking = await self._apply(booking_id, plan)
        if new_status is not None:
            logger.info("Booking %s status -> %s by %s", booking_id, new_status.value, actor.user_id)
        return booking

    async def _apply(self, booking_id: str, plan: Callable[[Booking], Changes]) -> Booking:
        for attempt in range(1, self._max_attempts + 1):
            current = await self._repository.get(booking_id)
            if isinstance(current, NotFound):
                raise NotFoundError("Booking not found")

            changes = plan(current)
            if not changes:
                return current

            result = await self._repository.conditional_update(
                booking_id,
                current.version,
                lambda booking: _apply_changes(booking, changes),
            )
            if isinstance(result, NotFound):
                raise NotFoundError("Booking not found")
            if isinstance(result, VersionConflict):
                logger.debug("Version conflict on booking %s (attempt %d), re-reading", booking_id, attempt)
                continue
            return result

        logger.warning("Booking %s still conflicting after %d attempts", booking_id, self._max_attempts)
        raise StateConflictError("The booking was modified concurrently, please retry")
