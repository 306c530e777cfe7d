"""Franchise and policy models.

Franqueadora = the franchisor (owns academies, publishes the default policy).
Academy = a franchised unit where classes happen, with its own slot capacity.
FranchisorPolicy = a versioned business-rule set published by a franqueadora.
AcademyPolicyOverride = per-academy override map merged over the published policy.
"""

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from trainerbook.models.base import Base, JSONType, TimestampMixin, UTCDateTime, utcnow


class PolicyStatus(enum.StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Franqueadora(TimestampMixin, Base):
    __tablename__ = "franqueadoras"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    academies: Mapped[list["Academy"]] = relationship(back_populates="franqueadora")

    def __repr__(self) -> str:
        return f"<Franqueadora {self.name}>"


class Academy(TimestampMixin, Base):
    """A franchised unit. Bookings are scoped to one academy."""

    __tablename__ = "academies"

    id: Mapped[int] = mapped_column(primary_key=True)
    # Nullable: an academy without a franqueadora cannot carry balances
    franqueadora_id: Mapped[int | None] = mapped_column(ForeignKey("franqueadoras.id"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    # Concurrent student classes per slot; falls back to config["capacity_per_slot"], then 1
    capacity_per_slot: Mapped[int | None] = mapped_column()

    # Flexible unit config (schedule, capacity, etc.)
    config: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    franqueadora: Mapped["Franqueadora | None"] = relationship(back_populates="academies")

    def __repr__(self) -> str:
        return f"<Academy {self.name}>"


class FranchisorPolicy(TimestampMixin, Base):
    """A franchisor's rule set. Only the latest published one applies.

    Every rule column is nullable; a null falls back to the hard-coded default.
    """

    __tablename__ = "franchisor_policies"

    id: Mapped[int] = mapped_column(primary_key=True)
    franqueadora_id: Mapped[int] = mapped_column(ForeignKey("franqueadoras.id"), nullable=False)
    status: Mapped[PolicyStatus] = mapped_column(
        Enum(PolicyStatus, name="policy_status", values_callable=lambda e: [x.value for x in e]),
        default=PolicyStatus.DRAFT,
        nullable=False,
    )
    effective_from: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    credits_per_class: Mapped[int | None] = mapped_column()
    class_duration_minutes: Mapped[int | None] = mapped_column()
    checkin_tolerance_minutes: Mapped[int | None] = mapped_column()
    student_min_booking_notice_minutes: Mapped[int | None] = mapped_column()
    student_reschedule_min_notice_minutes: Mapped[int | None] = mapped_column()
    late_cancel_threshold_minutes: Mapped[int | None] = mapped_column()
    late_cancel_penalty_credits: Mapped[int | None] = mapped_column()
    no_show_penalty_credits: Mapped[int | None] = mapped_column()
    teacher_minutes_per_class: Mapped[int | None] = mapped_column()
    teacher_rest_minutes_between_classes: Mapped[int | None] = mapped_column()
    teacher_max_daily_classes: Mapped[int | None] = mapped_column()
    max_future_booking_days: Mapped[int | None] = mapped_column()
    max_cancel_per_month: Mapped[int | None] = mapped_column()

    __table_args__ = (Index("ix_franchisor_policies_lookup", "franqueadora_id", "status", "effective_from"),)

    def __repr__(self) -> str:
        return f"<FranchisorPolicy {self.status.value} franqueadora={self.franqueadora_id}>"


class AcademyPolicyOverride(TimestampMixin, Base):
    __tablename__ = "academy_policy_overrides"

    id: Mapped[int] = mapped_column(primary_key=True)
    academy_id: Mapped[int] = mapped_column(ForeignKey("academies.id"), unique=True, nullable=False)
    overrides: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<AcademyPolicyOverride academy={self.academy_id}>"
