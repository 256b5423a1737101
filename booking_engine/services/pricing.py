"""Pricing service for booking amount calculation.

All amounts are integer minor units. Each fee is floored; the payment
processing fee applies to the subtotal (base + tax + platform fee).
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from booking_engine.core.config import Settings


@dataclass(frozen=True)
class PricingBreakdown:
    base_amount: int
    tax: int
    platform_fee: int
    payment_fee: int
    total_amount: int


def _floor_share(amount: int, rate: float) -> int:
    return int((Decimal(amount) * Decimal(str(rate))).to_integral_value(rounding=ROUND_FLOOR))


def calculate_pricing(
    base_amount: int,
    tax_rate: float = 0.10,
    platform_fee_rate: float = 0.05,
    payment_fee_rate: float = 0.036,
) -> PricingBreakdown:
    """Break a base amount down into tax and fees.

    3000 -> tax 300, platform fee 150, payment fee floor(3450 * 0.036) = 124,
    total 3574.
    """
    if base_amount < 0:
        raise ValueError("base amount cannot be negative")

    tax = _floor_share(base_amount, tax_rate)
    platform_fee = _floor_share(base_amount, platform_fee_rate)
    subtotal = base_amount + tax + platform_fee
    payment_fee = _floor_share(subtotal, payment_fee_rate)

    return PricingBreakdown(
        base_amount=base_amount,
        tax=tax,
        platform_fee=platform_fee,
        payment_fee=payment_fee,
        total_amount=subtotal + payment_fee,
    )


def price_booking(unit_price: int, participant_count: int, settings: Settings) -> PricingBreakdown:
    return calculate_pricing(
        unit_price * participant_count,
        tax_rate=settings.tax_rate,
        platform_fee_rate=settings.platform_fee_rate,
        payment_fee_rate=settings.payment_fee_rate,
    )
