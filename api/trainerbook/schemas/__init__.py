"""Pydantic schemas for API serialisation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from trainerbook.models.booking import BookingSource, BookingStatus
from trainerbook.models.credit import TransactionSource, TransactionType

# --- Booking ---


class BookingCreate(BaseModel):
    source: BookingSource
    teacher_id: int
    academy_id: int
    start_at: datetime
    end_at: datetime
    student_id: int | None = None
    cancellable_until: datetime | None = None
    student_notes: str | None = None
    teacher_notes: str | None = None


class BookingClaim(BaseModel):
    student_id: int
    student_notes: str | None = None


class BookingCancel(BaseModel):
    actor_id: int | None = None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: BookingSource
    teacher_id: int
    student_id: int | None
    academy_id: int
    start_at: datetime
    end_at: datetime
    status_canonical: BookingStatus
    cancellable_until: datetime | None
    student_notes: str | None
    teacher_notes: str | None
    created_at: datetime
    updated_at: datetime


class BookingResultOut(BaseModel):
    booking: BookingOut
    warnings: list[str] = []


# --- Policy ---


class EffectivePolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    credits_per_class: int
    class_duration_minutes: int
    checkin_tolerance_minutes: int
    student_min_booking_notice_minutes: int
    student_reschedule_min_notice_minutes: int
    late_cancel_threshold_minutes: int
    late_cancel_penalty_credits: int
    no_show_penalty_credits: int
    teacher_minutes_per_class: int
    teacher_rest_minutes_between_classes: int
    teacher_max_daily_classes: int
    max_future_booking_days: int
    max_cancel_per_month: int


# --- Balances ---


class BalanceGrant(BaseModel):
    franqueadora_id: int
    qty: int = Field(gt=0)
    reason: str | None = None


class StudentBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: int
    franqueadora_id: int
    total_purchased: int
    total_consumed: int
    locked_qty: int
    available: int


class TeacherBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    teacher_id: int
    franqueadora_id: int
    available_hours: int
    locked_hours: int
    available: int


class StudentTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    source: TransactionSource
    qty: int
    booking_id: int | None
    meta: dict
    created_at: datetime


class HourTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    source: TransactionSource
    qty: int
    booking_id: int | None
    meta: dict
    unlock_at: datetime | None
    created_at: datetime
