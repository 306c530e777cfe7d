"""Balance and ledger models.

Students hold class credits and teachers hold hours, both per franqueadora.
The balance rows are the counters read on every booking; the transaction
tables are the append-only audit trail. Counters and log entries are always
written in the same flush by the ledger service.
"""

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from trainerbook.models.base import Base, JSONType, TimestampMixin, UTCDateTime


class TransactionType(enum.StrEnum):
    GRANT = "GRANT"
    CONSUME = "CONSUME"
    REFUND = "REFUND"
    EXPIRED = "EXPIRED"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"
    REVOKE = "REVOKE"


class TransactionSource(enum.StrEnum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    SYSTEM = "SYSTEM"


transaction_type_enum = Enum(
    TransactionType, name="transaction_type", values_callable=lambda e: [x.value for x in e]
)
transaction_source_enum = Enum(
    TransactionSource, name="transaction_source", values_callable=lambda e: [x.value for x in e]
)


class StudentClassBalance(TimestampMixin, Base):
    __tablename__ = "student_class_balances"

    id: Mapped[int] = mapped_column(primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    franqueadora_id: Mapped[int] = mapped_column(ForeignKey("franqueadoras.id"), nullable=False)
    total_purchased: Mapped[int] = mapped_column(default=0, nullable=False)
    total_consumed: Mapped[int] = mapped_column(default=0, nullable=False)
    locked_qty: Mapped[int] = mapped_column(default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_student_balance_owner", "student_id", "franqueadora_id", unique=True),)

    @property
    def available(self) -> int:
        return self.total_purchased - self.total_consumed - self.locked_qty

    def __repr__(self) -> str:
        return f"<StudentClassBalance student={self.student_id} available={self.available}>"


class ProfessorHourBalance(TimestampMixin, Base):
    __tablename__ = "professor_hour_balances"

    id: Mapped[int] = mapped_column(primary_key=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    franqueadora_id: Mapped[int] = mapped_column(ForeignKey("franqueadoras.id"), nullable=False)
    available_hours: Mapped[int] = mapped_column(default=0, nullable=False)
    # Earned from student-led classes, usable once the class is completed
    locked_hours: Mapped[int] = mapped_column(default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_professor_balance_owner", "teacher_id", "franqueadora_id", unique=True),)

    @property
    def available(self) -> int:
        return self.available_hours - self.locked_hours

    def __repr__(self) -> str:
        return f"<ProfessorHourBalance teacher={self.teacher_id} available={self.available}>"


class StudentClassTransaction(TimestampMixin, Base):
    """A single movement of student class credits. qty is always positive; type gives direction."""

    __tablename__ = "student_class_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    franqueadora_id: Mapped[int] = mapped_column(ForeignKey("franqueadoras.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(transaction_type_enum, nullable=False)
    source: Mapped[TransactionSource] = mapped_column(transaction_source_enum, nullable=False)
    qty: Mapped[int] = mapped_column(nullable=False)
    booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"))
    meta: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    unlock_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index("ix_student_txn_owner", "student_id", "franqueadora_id"),
        Index("ix_student_txn_booking", "booking_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<StudentClassTransaction {self.type.value} {self.qty} student={self.student_id}>"


class HourTransaction(TimestampMixin, Base):
    """A single movement of teacher hours."""

    __tablename__ = "hour_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    franqueadora_id: Mapped[int] = mapped_column(ForeignKey("franqueadoras.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(transaction_type_enum, nullable=False)
    source: Mapped[TransactionSource] = mapped_column(transaction_source_enum, nullable=False)
    qty: Mapped[int] = mapped_column(nullable=False)
    booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"))
    meta: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    unlock_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index("ix_hour_txn_owner", "teacher_id", "franqueadora_id"),
        Index("ix_hour_txn_booking", "booking_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<HourTransaction {self.type.value} {self.qty} teacher={self.teacher_id}>"
