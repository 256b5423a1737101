"""Pydantic schemas for API serialisation.

Wire names are camelCase; snake_case is accepted on input as well.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from booking_engine.models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from booking_engine.services.refunds import RefundCalculation

PHONE_PATTERN = r"^[0-9\-+(). ]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Booking ---


class BookingCreate(CamelModel):
    offering_id: str = Field(min_length=1)
    participant_count: int = Field(ge=1, le=50)
    contact_name: str = Field(min_length=1, max_length=100)
    contact_email: EmailStr
    contact_phone: str = Field(min_length=1, max_length=50, pattern=PHONE_PATTERN)
    special_requests: str | None = Field(default=None, max_length=500)
    payment_method: PaymentMethod
    scheduled_at: datetime
    duration_minutes: int = Field(alias="duration", ge=30, le=480)

    @field_validator("scheduled_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)


class BookingCreatedOut(CamelModel):
    booking_id: str


class PricingOut(CamelModel):
    base_amount: int
    tax: int
    platform_fee: int
    payment_fee: int
    total_amount: int
    currency: str


class BookingOut(CamelModel):
    id: str
    offering_id: str
    provider_id: str
    requester_id: str
    scheduled_at: datetime
    duration_minutes: int = Field(alias="duration")
    participant_count: int
    pricing: PricingOut
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_intent_id: str | None
    status: BookingStatus
    student_notes: str | None
    teacher_notes: str | None
    contact_name: str
    contact_email: str
    contact_phone: str
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime
    confirmed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    version: int

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingOut":
        pricing = PricingOut(
            base_amount=booking.base_amount,
            tax=booking.tax_amount,
            platform_fee=booking.platform_fee,
            payment_fee=booking.payment_fee,
            total_amount=booking.total_amount,
            currency=booking.currency,
        )
        return cls(
            id=booking.id,
            offering_id=booking.offering_id,
            provider_id=booking.provider_id,
            requester_id=booking.requester_id,
            scheduled_at=booking.scheduled_at,
            duration_minutes=booking.duration_minutes,
            participant_count=booking.participant_count,
            pricing=pricing,
            payment_method=booking.payment_method,
            payment_status=booking.payment_status,
            payment_intent_id=booking.payment_intent_id,
            status=booking.status,
            student_notes=booking.student_notes,
            teacher_notes=booking.teacher_notes,
            contact_name=booking.contact_name,
            contact_email=booking.contact_email,
            contact_phone=booking.contact_phone,
            cancellation_reason=booking.cancellation_reason,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            confirmed_at=booking.confirmed_at,
            completed_at=booking.completed_at,
            cancelled_at=booking.cancelled_at,
            version=booking.version,
        )


class BookingListOut(CamelModel):
    bookings: list[BookingOut]


class BookingUpdate(CamelModel):
    status: BookingStatus | None = None
    student_notes: str | None = Field(default=None, max_length=2000)
    teacher_notes: str | None = Field(default=None, max_length=2000)


class RefundCalculationOut(CamelModel):
    original_amount: int
    refund_amount: int
    refund_rate: int
    cancellation_fee: int
    reason: str

    @classmethod
    def from_calculation(cls, calculation: RefundCalculation) -> "RefundCalculationOut":
        return cls(
            original_amount=calculation.original_amount,
            refund_amount=calculation.refund_amount,
            refund_rate=calculation.refund_rate,
            cancellation_fee=calculation.cancellation_fee,
            reason=calculation.reason,
        )


class CancellationOut(CamelModel):
    refund: RefundCalculationOut


# --- Payments ---


class PaymentIntentCreate(CamelModel):
    amount: int = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    booking_id: str = Field(min_length=1)
    metadata: dict[str, str] = Field(default_factory=dict)


class PaymentIntentOut(CamelModel):
    client_secret: str | None
    payment_intent_id: str


class PaymentConfirmRequest(CamelModel):
    payment_intent_id: str = Field(min_length=1)


class PaymentConfirmOut(CamelModel):
    payment_status: str
    booking_status: BookingStatus
    booking_payment_status: PaymentStatus


class RefundRequest(CamelModel):
    booking_id: str = Field(min_length=1)
    amount: int | None = Field(default=None, gt=0)
    reason: str | None = Field(default=None, max_length=500)


class RefundOut(CamelModel):
    refund_id: str
    amount: int
    status: str


# --- Webhooks ---


class WebhookAck(BaseModel):
    received: bool = True
