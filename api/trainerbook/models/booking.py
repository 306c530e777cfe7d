"""Booking model.

A booking is a teacher's time interval at an academy. Without a student it is
open inventory (AVAILABLE); with one it is a class. Cancelling a class puts the
row back into inventory, and the history of the cancellation is kept in
BookingCancellation.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from trainerbook.models.base import Base, TimestampMixin, UTCDateTime


class BookingStatus(enum.StrEnum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    PAID = "PAID"
    DONE = "DONE"
    CANCELED = "CANCELED"


class BookingSource(enum.StrEnum):
    STUDENT = "STUDENT"  # Student spends a class credit
    TEACHER = "TEACHER"  # Teacher publishes inventory or spends an hour to book a student


# Statuses that occupy the teacher and a unit slot when a student is assigned
OCCUPYING_STATUSES = (BookingStatus.RESERVED, BookingStatus.PAID, BookingStatus.DONE)

booking_source_enum = Enum(BookingSource, name="booking_source", values_callable=lambda e: [x.value for x in e])


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[BookingSource] = mapped_column(booking_source_enum, nullable=False)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    student_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    academy_id: Mapped[int] = mapped_column(ForeignKey("academies.id"), nullable=False)

    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    status_canonical: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=lambda e: [x.value for x in e]),
        default=BookingStatus.AVAILABLE,
        nullable=False,
    )
    cancellable_until: Mapped[datetime | None] = mapped_column(UTCDateTime)

    student_notes: Mapped[str | None] = mapped_column(Text)
    teacher_notes: Mapped[str | None] = mapped_column(Text)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_bookings_teacher_start", "teacher_id", "start_at"),
        Index("ix_bookings_academy_start", "academy_id", "start_at"),
        Index("ix_bookings_student", "student_id", "status_canonical"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.status_canonical.value} {self.start_at:%Y-%m-%d %H:%M} teacher={self.teacher_id}>"


class BookingCancellation(Base):
    """Immutable record of a class cancellation. Monthly cancellation caps count these."""

    __tablename__ = "booking_cancellations"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    academy_id: Mapped[int] = mapped_column(ForeignKey("academies.id"), nullable=False)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    student_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    source: Mapped[BookingSource] = mapped_column(booking_source_enum, nullable=False)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_late: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    penalty_credits: Mapped[int] = mapped_column(default=0, nullable=False)
    cancelled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (Index("ix_booking_cancellations_student", "student_id", "academy_id", "cancelled_at"),)

    def __repr__(self) -> str:
        return f"<BookingCancellation booking={self.booking_id} late={self.is_late}>"
