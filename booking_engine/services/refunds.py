"""Cancellation policy and refund calculation.

Pure functions only: nothing here touches storage or the payment provider,
so every rule can be exercised with a plain Booking instance and a fixed
``now``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from booking_engine.core.config import Settings
from booking_engine.models.booking import Booking, PaymentStatus

REASON_NOT_PAID = "No payment was captured"
REASON_PROVIDER = "Cancelled by the provider"
REASON_24H_PLUS = "Cancelled 24 hours or more before the start"
REASON_24H_MINUS = "Cancelled within 24 hours of the start"
REASON_SAME_DAY = "Cancelled after the scheduled start"


@dataclass(frozen=True)
class CancellationPolicy:
    """Refund rates in percent, keyed by hours until the scheduled start."""

    hours_24_plus: int = 100
    hours_24_minus: int = 50
    same_day: int = 0
    provider_cancellation: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "CancellationPolicy":
        return cls(
            hours_24_plus=settings.refund_rate_24h_plus,
            hours_24_minus=settings.refund_rate_24h_minus,
            same_day=settings.refund_rate_same_day,
            provider_cancellation=settings.refund_rate_provider,
        )


DEFAULT_CANCELLATION_POLICY = CancellationPolicy()


@dataclass(frozen=True)
class RefundCalculation:
    original_amount: int
    refund_amount: int
    refund_rate: int
    cancellation_fee: int
    reason: str


def select_refund_rate(
    hours_until_start: float,
    actor_is_provider: bool,
    policy: CancellationPolicy,
) -> tuple[int, str]:
    """Pick the policy bucket. Provider cancellations ignore timing."""
    if actor_is_provider:
        return policy.provider_cancellation, REASON_PROVIDER
    if hours_until_start >= 24:
        return policy.hours_24_plus, REASON_24H_PLUS
    if hours_until_start >= 0:
        return policy.hours_24_minus, REASON_24H_MINUS
    return policy.same_day, REASON_SAME_DAY


def compute_refund(
    booking: Booking,
    now: datetime,
    actor_is_provider: bool,
    policy: CancellationPolicy = DEFAULT_CANCELLATION_POLICY,
) -> RefundCalculation:
    total = booking.total_amount

    if booking.payment_status != PaymentStatus.PAID:
        return RefundCalculation(
            original_amount=total,
            refund_amount=0,
            refund_rate=0,
            cancellation_fee=0,
            reason=REASON_NOT_PAID,
        )

    hours_until_start = (booking.scheduled_at - now) / timedelta(hours=1)
    rate, reason = select_refund_rate(hours_until_start, actor_is_provider, policy)

    refund_amount = int((Decimal(total) * rate / 100).to_integral_value(rounding=ROUND_HALF_UP))
    refund_amount = max(0, min(refund_amount, total))

    return RefundCalculation(
        original_amount=total,
        refund_amount=refund_amount,
        refund_rate=rate,
        cancellation_fee=total - refund_amount,
        reason=reason,
    )
