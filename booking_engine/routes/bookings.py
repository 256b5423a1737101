"""Booking routes: create, read, list, update and cancel."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from booking_engine.core.dependencies import get_current_identity, get_services
from booking_engine.models.booking import BookingStatus
from booking_engine.repositories.bookings import PartyRole
from booking_engine.schemas import (
    BookingCreate,
    BookingCreatedOut,
    BookingListOut,
    BookingOut,
    BookingUpdate,
    CancellationOut,
    RefundCalculationOut,
)
from booking_engine.services.access_guard import Identity
from booking_engine.services.container import BookingServices
from booking_engine.services.email import BookingEvent

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    booking = await services.booking_service.create_booking(
        identity,
        offering_id=body.offering_id,
        participant_count=body.participant_count,
        scheduled_at=body.scheduled_at,
        duration_minutes=body.duration_minutes,
        payment_method=body.payment_method,
        contact_name=body.contact_name,
        contact_email=body.contact_email,
        contact_phone=body.contact_phone,
        special_requests=body.special_requests,
    )
    services.notifier.schedule(background_tasks, booking, BookingEvent.CREATED)
    return BookingCreatedOut(booking_id=booking.id)


@router.get("", response_model=BookingListOut)
async def list_bookings(
    role: PartyRole = Query(...),
    user_id: str | None = Query(default=None, alias="userId"),
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    bookings = await services.booking_service.list_bookings(identity, role, user_id)
    return BookingListOut(bookings=[BookingOut.from_booking(b) for b in bookings])


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(
    booking_id: str,
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    booking = await services.booking_service.get_booking(booking_id, identity)
    return BookingOut.from_booking(booking)


@router.put("/{booking_id}", response_model=BookingOut)
async def update_booking(
    booking_id: str,
    body: BookingUpdate,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    booking = await services.booking_service.update_booking(
        booking_id,
        identity,
        status=body.status,
        student_notes=body.student_notes,
        teacher_notes=body.teacher_notes,
    )
    if body.status == BookingStatus.CONFIRMED:
        services.notifier.schedule(background_tasks, booking, BookingEvent.CONFIRMED)
    elif body.status == BookingStatus.CANCELLED:
        services.notifier.schedule(background_tasks, booking, BookingEvent.CANCELLED)
    return BookingOut.from_booking(booking)


@router.delete("/{booking_id}", response_model=CancellationOut)
async def cancel_booking(
    booking_id: str,
    background_tasks: BackgroundTasks,
    reason: str | None = Query(default=None, max_length=500),
    identity: Identity = Depends(get_current_identity),
    services: BookingServices = Depends(get_services),
):
    """Cancel a booking, refunding whatever the cancellation policy allows."""
    booking, calculation = await services.booking_service.cancel_booking(booking_id, identity, reason)
    services.notifier.schedule(background_tasks, booking, BookingEvent.CANCELLED)
    return CancellationOut(refund=RefundCalculationOut.from_calculation(calculation))
