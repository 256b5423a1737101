"""Payment provider webhook endpoint.

Acknowledges with 200 once the event is durably de-duplicated, including for
event types the engine ignores. Only a signature failure is answered with
400; anything that keeps the transition from becoming durable is a 4xx/5xx so
the provider redelivers.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request

from booking_engine.core.dependencies import get_services
from booking_engine.models.booking import PaymentStatus
from booking_engine.schemas import WebhookAck
from booking_engine.services.container import BookingServices
from booking_engine.services.email import BookingEvent
from booking_engine.services.webhooks import PAYMENT_SUCCEEDED, ReconcileOutcome

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    services: BookingServices = Depends(get_services),
):
    payload = await request.body()
    result = await services.reconciler.handle(payload, stripe_signature)

    if (
        result.outcome == ReconcileOutcome.PROCESSED
        and result.event_type == PAYMENT_SUCCEEDED
        and result.booking is not None
        and result.booking.payment_status == PaymentStatus.PAID
    ):
        services.notifier.schedule(background_tasks, result.booking, BookingEvent.PAYMENT_COMPLETED)

    return WebhookAck()
