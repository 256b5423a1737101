"""Booking notification emails via SMTP.

Mail goes out as a FastAPI background task once the state change has been
committed. A delivery failure is logged and never touches booking state.
"""

import enum
import logging
from email.message import EmailMessage

import aiosmtplib
from fastapi import BackgroundTasks

from booking_engine.core.config import Settings
from booking_engine.models.booking import Booking

logger = logging.getLogger(__name__)


class BookingEvent(enum.StrEnum):
    CREATED = "created"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    PAYMENT_COMPLETED = "payment_completed"


SUBJECTS = {
    BookingEvent.CREATED: "Your booking request has been received",
    BookingEvent.CONFIRMED: "Your booking is confirmed",
    BookingEvent.CANCELLED: "Your booking has been cancelled",
    BookingEvent.PAYMENT_COMPLETED: "Payment received for your booking",
}


def render_body(booking: Booking, event: BookingEvent) -> str:
    when = booking.scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
    lines = [
        f"Hi {booking.contact_name},",
        "",
        f"{SUBJECTS[event]}.",
        "",
        f"Booking: {booking.id}",
        f"Scheduled: {when} ({booking.duration_minutes} minutes)",
        f"Participants: {booking.participant_count}",
        f"Total: {booking.total_amount} {booking.currency}",
        f"Status: {booking.status.value} / payment {booking.payment_status.value}",
    ]
    if event == BookingEvent.CANCELLED and booking.cancellation_reason:
        lines.append(f"Reason: {booking.cancellation_reason}")
    lines += ["", "Lesson Booking"]
    return "\n".join(lines)


class BookingNotifier:
    def __init__(self, settings: Settings):
        self._settings = settings

    async def send_email(self, to: str, subject: str, body: str) -> None:
        """Send a plain-text email via SMTP."""
        message = EmailMessage()
        message["From"] = self._settings.smtp_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        await aiosmtplib.send(message, hostname=self._settings.smtp_host, port=self._settings.smtp_port)

    async def notify(self, booking: Booking, event: BookingEvent) -> None:
        try:
            await self.send_email(booking.contact_email, SUBJECTS[event], render_body(booking, event))
        except (aiosmtplib.SMTPException, OSError):
            logger.exception("Failed to send %s notification for booking %s", event.value, booking.id)
            return
        logger.info("Sent %s notification for booking %s to %s", event.value, booking.id, booking.contact_email)

    def schedule(self, background_tasks: BackgroundTasks, booking: Booking, event: BookingEvent) -> None:
        if not self._settings.notifications_enabled:
            return
        background_tasks.add_task(self.notify, booking, event)
