"""Domain exceptions for the booking engine.

Each exception carries the HTTP status the API layer renders it with. The
error handlers in main.py turn them into ``{"error": "<message>"}``.
"""

from fastapi import status


class BookingEngineError(Exception):
    """Base class for all engine errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BookingEngineError):
    """Malformed or mismatched input (e.g. amount mismatch, bad signature)."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(BookingEngineError):
    """Missing or invalid identity."""

    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(BookingEngineError):
    """The identity lacks the capability for the operation."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(BookingEngineError):
    status_code = status.HTTP_404_NOT_FOUND


class StateConflictError(BookingEngineError):
    """Illegal transition, double payment or a replayed write-once field."""

    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(BookingEngineError):
    """The payment provider failed or timed out."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class ConfigurationError(BookingEngineError):
    """Required configuration is missing (e.g. the webhook secret)."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ServiceUnavailableError(BookingEngineError):
    """A transient condition the caller should retry (e.g. a webhook that arrived too early)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
