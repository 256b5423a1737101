"""Payment provider integration.

Wraps the Stripe Python SDK behind a small async interface. The SDK is
blocking, so each call runs in a worker thread under a bounded timeout; a
timeout or transport failure surfaces as a retryable ExternalServiceError.
The API key is passed per request instead of being set on the stripe module.
"""

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from booking_engine.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class IntentOutcome(enum.StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class ProviderIntent:
    id: str
    client_secret: str | None
    status: str
    amount: int
    booking_id: str | None = None
    has_payment_error: bool = False

    @property
    def outcome(self) -> IntentOutcome:
        return intent_outcome(self.status, self.has_payment_error)


@dataclass(frozen=True)
class ProviderRefund:
    id: str
    amount: int
    status: str


def intent_outcome(status: str, has_payment_error: bool = False) -> IntentOutcome:
    """Map a raw provider status onto what the engine acts on.

    A failed attempt leaves a Stripe intent in ``requires_payment_method``
    with ``last_payment_error`` set; everything else that is not terminal is
    still in flight.
    """
    if status == "succeeded":
        return IntentOutcome.SUCCEEDED
    if status == "payment_failed" or (status == "requires_payment_method" and has_payment_error):
        return IntentOutcome.FAILED
    return IntentOutcome.IN_FLIGHT


class PaymentProvider(Protocol):
    async def create_intent(
        self, amount: int, currency: str, metadata: dict[str, str]
    ) -> ProviderIntent: ...

    async def retrieve_intent(self, intent_id: str) -> ProviderIntent: ...

    async def cancel_intent(self, intent_id: str) -> None: ...

    async def create_refund(self, intent_id: str, amount: int, reason: str | None) -> ProviderRefund: ...

    async def close(self) -> None: ...


def _to_intent(pi: Any) -> ProviderIntent:
    metadata = getattr(pi, "metadata", None)
    return ProviderIntent(
        id=pi.id,
        client_secret=getattr(pi, "client_secret", None),
        status=pi.status,
        amount=pi.amount,
        booking_id=getattr(metadata, "booking_id", None) if metadata is not None else None,
        has_payment_error=getattr(pi, "last_payment_error", None) is not None,
    )


class StripePaymentProvider:
    def __init__(self, api_key: str, timeout_seconds: float = 10.0):
        self._api_key = api_key
        self._timeout = timeout_seconds

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, api_key=self._api_key, **params),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning("Stripe call %s timed out after %.1fs", operation, self._timeout)
            raise ExternalServiceError("Payment provider timed out") from None
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            logger.warning("Stripe unavailable during %s: %s", operation, exc)
            raise ExternalServiceError("Payment provider unavailable") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe rejected %s: %s", operation, exc)
            raise ExternalServiceError(
                exc.user_message or "Payment provider rejected the request", retryable=False
            ) from exc

    async def create_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> ProviderIntent:
        pi = await self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return _to_intent(pi)

    async def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        return _to_intent(await self._call("retrieve_intent", stripe.PaymentIntent.retrieve, intent_id))

    async def cancel_intent(self, intent_id: str) -> None:
        await self._call("cancel_intent", stripe.PaymentIntent.cancel, intent_id)

    async def create_refund(self, intent_id: str, amount: int, reason: str | None) -> ProviderRefund:
        refund = await self._call(
            "create_refund",
            stripe.Refund.create,
            payment_intent=intent_id,
            amount=amount,
            reason="requested_by_customer",
            metadata={"reason": reason or ""},
            idempotency_key=f"refund-{intent_id}",
        )
        return ProviderRefund(id=refund.id, amount=refund.amount, status=refund.status)

    async def close(self) -> None:
        """Nothing is pooled per instance; present for the service lifecycle."""
