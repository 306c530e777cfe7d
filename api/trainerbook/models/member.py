"""People and the links between them.

User = a student, teacher or admin (global identity).
TeacherStudent = a teacher's relationship with a student; approved portfolio
links are billed outside the normal class credit flow.
StudentUnit = the academies a student has booked at, kept up to date by the engine.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from trainerbook.models.base import Base, TimestampMixin, UTCDateTime


class UserRole(enum.StrEnum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class ConnectionStatus(enum.StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [x.value for x in e]),
        default=UserRole.STUDENT,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Set when the student completes a class; reset when the last active booking is cancelled
    first_class_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class TeacherStudent(TimestampMixin, Base):
    __tablename__ = "teacher_students"

    id: Mapped[int] = mapped_column(primary_key=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    is_portfolio: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    connection_status: Mapped[ConnectionStatus] = mapped_column(
        Enum(ConnectionStatus, name="connection_status", values_callable=lambda e: [x.value for x in e]),
        default=ConnectionStatus.PENDING,
        nullable=False,
    )

    __table_args__ = (Index("ix_teacher_students_pair", "teacher_id", "student_id", unique=True),)

    @property
    def is_linked(self) -> bool:
        return self.is_portfolio and self.connection_status == ConnectionStatus.APPROVED

    def __repr__(self) -> str:
        return f"<TeacherStudent teacher={self.teacher_id} student={self.student_id}>"


class StudentUnit(TimestampMixin, Base):
    __tablename__ = "student_units"

    id: Mapped[int] = mapped_column(primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    academy_id: Mapped[int] = mapped_column(ForeignKey("academies.id"), nullable=False)
    first_booking_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_booking_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    total_bookings: Mapped[int] = mapped_column(default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_student_units_pair", "student_id", "academy_id", unique=True),)

    def __repr__(self) -> str:
        return f"<StudentUnit student={self.student_id} academy={self.academy_id}>"
