"""Offering model.

An offering is a bookable lesson or activity published by a provider. It is
owned by the discovery layer; the engine reads it to resolve the provider and
the unit price when a booking is created.
"""

import uuid

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.models.base import Base, TimestampMixin


class Offering(TimestampMixin, Base):
    __tablename__ = "offerings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Offering {self.title} by {self.provider_id}>"
