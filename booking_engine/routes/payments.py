"""Payment routes: create and confirm card payment intents, issue refunds."""

from fastapi import APIRouter, BackgroundTasks, Depends

from booking_engine.core.dependencies import get_current_identity, get_services
from booking_engine.models.booking import PaymentStatus
from booking_engine.schemas import (
    PaymentConfirmOut,
    PaymentConfirmRequest,
    PaymentIntentCreate,
    PaymentIntentOut,
    RefundOut,
    RefundRequest,
)
from booking_engine.services.access_guard import Identity
from booking_engine.services.container import BookingServices
from booking_engine.services.email import BookingEvent

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-intent", response_model=PaymentIntentOut)
async def create_intent(
    body: PaymentIntentCreate,
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    created = await services.payments.create_intent(
        body.booking_id,
        identity,
        requested_amount=body.amount,
        currency=body.currency,
        metadata=body.metadata,
    )
    return PaymentIntentOut(client_secret=created.client_secret, payment_intent_id=created.payment_intent_id)


@router.post("/confirm", response_model=PaymentConfirmOut)
async def confirm_payment(
    body: PaymentConfirmRequest,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    """Pull the provider-side status of an intent and apply it to the booking."""
    result = await services.payments.confirm_intent(body.payment_intent_id, identity)

    booking = result.booking
    if result.applied and booking.payment_status == PaymentStatus.PAID:
        services.notifier.schedule(background_tasks, booking, BookingEvent.PAYMENT_COMPLETED)

    return PaymentConfirmOut(
        payment_status=result.provider_status,
        booking_status=booking.status,
        booking_payment_status=booking.payment_status,
    )


@router.post("/refund", response_model=RefundOut)
async def refund_payment(
    body: RefundRequest,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    result = await services.payments.refund(body.booking_id, identity, amount=body.amount, reason=body.reason)
    services.notifier.schedule(background_tasks, result.booking, BookingEvent.CANCELLED)
    return RefundOut(refund_id=result.refund_id, amount=result.amount, status=result.status)
