"""All models imported here so Base.metadata sees every table."""

from booking_engine.models.base import Base
from booking_engine.models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from booking_engine.models.offering import Offering
from booking_engine.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Base",
    "Booking",
    "BookingStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Offering",
    "ProcessedWebhookEvent",
]
