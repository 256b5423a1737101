"""Booking store.

Every method opens its own short-lived session so that API requests and
webhook deliveries never share a unit of work. Expected outcomes come back as
values (``NotFound``, ``VersionConflict``) rather than exceptions.
"""

import enum
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from booking_engine.models.booking import PRICING_FIELDS, Booking


@dataclass(frozen=True)
class NotFound:
    booking_id: str


@dataclass(frozen=True)
class VersionConflict:
    booking_id: str
    expected_version: int


class PartyRole(enum.StrEnum):
    STUDENT = "student"
    TEACHER = "teacher"


class BookingRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, booking: Booking) -> Booking:
        async with self._session_factory() as db:
            db.add(booking)
            await db.commit()
            return booking

    async def get(self, booking_id: str) -> Booking | NotFound:
        async with self._session_factory() as db:
            booking = await db.get(Booking, booking_id)
            return booking if booking is not None else NotFound(booking_id)

    async def find_by_payment_intent(self, payment_intent_id: str) -> Booking | NotFound:
        async with self._session_factory() as db:
            result = await db.execute(select(Booking).where(Booking.payment_intent_id == payment_intent_id))
            booking = result.scalar_one_or_none()
            return booking if booking is not None else NotFound(payment_intent_id)

    async def list_for_party(self, user_id: str, role: PartyRole, limit: int = 100) -> list[Booking]:
        column = Booking.requester_id if role == PartyRole.STUDENT else Booking.provider_id
        async with self._session_factory() as db:
            result = await db.execute(
                select(Booking).where(column == user_id).order_by(Booking.created_at.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def conditional_update(
        self,
        booking_id: str,
        expected_version: int,
        mutator: Callable[[Booking], None],
    ) -> Booking | NotFound | VersionConflict:
        """Apply ``mutator`` only if the stored version still equals ``expected_version``.

        The version check is repeated by the database at flush time
        (``version_id_col``), so a writer that slips in between the read and
        the write here also yields ``VersionConflict``.
        """
        async with self._session_factory() as db:
            booking = await db.get(Booking, booking_id)
            if booking is None:
                return NotFound(booking_id)
            if booking.version != expected_version:
                return VersionConflict(booking_id, expected_version)

            mutator(booking)

            state = inspect(booking)
            touched = [name for name in PRICING_FIELDS if state.attrs[name].history.has_changes()]
            if touched:
                raise ValueError(f"Pricing is immutable after creation: {', '.join(touched)}")

            try:
                await db.commit()
            except StaleDataError:
                await db.rollback()
                return VersionConflict(booking_id, expected_version)
            return booking
