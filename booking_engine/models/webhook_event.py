"""Idempotency ledger entries for processed payment-provider webhook events."""

from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.models.base import Base, UTCDateTime, utcnow


class ProcessedWebhookEvent(Base):
    """One row per provider event id that has been fully handled."""

    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    booking_id: Mapped[str | None] = mapped_column(String(36))
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_processed_webhook_events_processed_at", "processed_at"),)

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent {self.event_id} {self.event_type} {self.outcome}>"
