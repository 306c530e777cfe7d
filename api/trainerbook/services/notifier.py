"""Notification sink for booking lifecycle events.

The booking engine hands events to a Notifier after the booking state has been
committed. Delivery is best effort: the engine reports a failed notification
as a warning and never rolls back the booking because of it.
"""

import enum
import logging
from typing import Protocol

from trainerbook.core.config import Settings
from trainerbook.models.booking import Booking
from trainerbook.models.member import User
from trainerbook.services.email import send_email

logger = logging.getLogger(__name__)


class BookingEventType(enum.StrEnum):
    CREATED = "booking.created"
    CANCELLED = "booking.cancelled"
    CONFIRMED = "booking.confirmed"
    COMPLETED = "booking.completed"


class Notifier(Protocol):
    async def notify(
        self,
        event_type: BookingEventType,
        booking: Booking,
        student: User | None,
        teacher: User | None,
    ) -> None: ...


class LoggingNotifier:
    async def notify(self, event_type, booking, student, teacher) -> None:
        logger.info(
            "%s booking=%s teacher=%s student=%s start=%s",
            event_type.value,
            booking.id,
            teacher.id if teacher else None,
            student.id if student else None,
            booking.start_at.isoformat(),
        )


_SUBJECTS = {
    BookingEventType.CREATED: "Class booked",
    BookingEventType.CANCELLED: "Class cancelled",
    BookingEventType.CONFIRMED: "Class confirmed",
    BookingEventType.COMPLETED: "Class completed",
}


def _email_body(event_type: BookingEventType, booking: Booking, recipient: User, other: User | None) -> str:
    when = booking.start_at.strftime("%A %d %B at %H:%M UTC")
    with_whom = f" with {other.name}" if other else ""
    return (
        f"Hi {recipient.name},\n\n"
        f"{_SUBJECTS[event_type]}{with_whom}: {when}.\n\n"
        f"Booking reference #{booking.id}.\n\n"
        f"TrainerBook"
    )


class EmailNotifier:
    """Emails the student and the teacher about each event."""

    async def notify(self, event_type, booking, student, teacher) -> None:
        subject = f"TrainerBook: {_SUBJECTS[event_type]}"
        for recipient, other in ((student, teacher), (teacher, student)):
            if recipient is None:
                continue
            await send_email(recipient.email, subject, _email_body(event_type, booking, recipient, other))


class CompositeNotifier:
    """Fans an event out to several notifiers. The first failure propagates after all were tried."""

    def __init__(self, *notifiers: Notifier):
        self.notifiers = notifiers

    async def notify(self, event_type, booking, student, teacher) -> None:
        first_error: Exception | None = None
        for notifier in self.notifiers:
            try:
                await notifier.notify(event_type, booking, student, teacher)
            except Exception as exc:
                logger.warning("%s failed for %s: %s", type(notifier).__name__, event_type.value, exc)
                first_error = first_error or exc
        if first_error is not None:
            raise first_error


def build_notifier(config: Settings) -> Notifier:
    if config.notifications_enabled:
        return CompositeNotifier(LoggingNotifier(), EmailNotifier())
    return LoggingNotifier()
