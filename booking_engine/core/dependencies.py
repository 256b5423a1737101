"""FastAPI dependencies for injection into route handlers."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from booking_engine.core.auth import decode_token
from booking_engine.core.exceptions import AuthenticationError
from booking_engine.services.access_guard import Identity
from booking_engine.services.container import BookingServices

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> BookingServices:
    return request.app.state.services


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    """Extract and validate the acting identity from the JWT bearer token."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise AuthenticationError("Invalid token") from None

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")
    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Invalid token")

    return Identity(user_id=str(subject), is_admin=payload.get("admin") is True)
