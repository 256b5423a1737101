"""Access guard: who may read or mutate a booking.

The acting identity must be the booking's requester, its provider, or an
administrator. Role-specific checks narrow that further for status changes,
payments and refunds. Every failure raises AuthorizationError.
"""

import enum
from dataclasses import dataclass

from booking_engine.core.exceptions import AuthorizationError
from booking_engine.models.booking import Booking, BookingStatus


@dataclass(frozen=True)
class Identity:
    user_id: str
    is_admin: bool = False


class BookingRole(enum.StrEnum):
    REQUESTER = "requester"
    PROVIDER = "provider"
    ADMIN = "admin"


# Which roles may move a booking into each status
STATUS_CAPABILITIES: dict[BookingStatus, frozenset[BookingRole]] = {
    BookingStatus.CONFIRMED: frozenset({BookingRole.PROVIDER, BookingRole.ADMIN}),
    BookingStatus.COMPLETED: frozenset({BookingRole.PROVIDER, BookingRole.ADMIN}),
    BookingStatus.CANCELLED: frozenset({BookingRole.REQUESTER, BookingRole.PROVIDER, BookingRole.ADMIN}),
    BookingStatus.PENDING: frozenset(),
}


def resolve_role(booking: Booking, identity: Identity) -> BookingRole | None:
    """The strongest role the identity holds on this booking."""
    if booking.provider_id == identity.user_id:
        return BookingRole.PROVIDER
    if identity.is_admin:
        return BookingRole.ADMIN
    if booking.requester_id == identity.user_id:
        return BookingRole.REQUESTER
    return None


def ensure_access(booking: Booking, identity: Identity) -> BookingRole:
    role = resolve_role(booking, identity)
    if role is None:
        raise AuthorizationError("You do not have access to this booking")
    return role


def ensure_can_transition(booking: Booking, identity: Identity, new_status: BookingStatus) -> BookingRole:
    role = ensure_access(booking, identity)
    if role not in STATUS_CAPABILITIES[new_status]:
        raise AuthorizationError(f"Your role on this booking cannot set status '{new_status.value}'")
    return role


def ensure_requester(booking: Booking, identity: Identity) -> None:
    if booking.requester_id != identity.user_id:
        raise AuthorizationError("Only the requester can pay for this booking")


def ensure_provider_or_admin(booking: Booking, identity: Identity) -> BookingRole:
    role = ensure_access(booking, identity)
    if role not in (BookingRole.PROVIDER, BookingRole.ADMIN):
        raise AuthorizationError("Only the provider or an administrator can do this")
    return role


def ensure_can_list(identity: Identity, target_user_id: str) -> None:
    if target_user_id != identity.user_id and not identity.is_admin:
        raise AuthorizationError("You can only list your own bookings")
