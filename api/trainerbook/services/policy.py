"""Academy policy resolution and enforcement.

The effective rule set for an academy is the hard-coded defaults, overlaid by
the franqueadora's latest published policy, overlaid by the academy's own
override map. Validation helpers return structured results with
user-displayable messages; the booking engine decides whether to raise.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trainerbook.models.academy import Academy, AcademyPolicyOverride, FranchisorPolicy, PolicyStatus
from trainerbook.models.base import utcnow
from trainerbook.models.booking import Booking, BookingCancellation, BookingStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class EffectivePolicy:
    credits_per_class: int = 1
    class_duration_minutes: int = 60
    checkin_tolerance_minutes: int = 30
    student_min_booking_notice_minutes: int = 0
    student_reschedule_min_notice_minutes: int = 0
    late_cancel_threshold_minutes: int = 240
    late_cancel_penalty_credits: int = 1
    no_show_penalty_credits: int = 1
    teacher_minutes_per_class: int = 60
    teacher_rest_minutes_between_classes: int = 10
    teacher_max_daily_classes: int = 12
    max_future_booking_days: int = 30
    max_cancel_per_month: int = 0  # 0 = unlimited


DEFAULT_POLICY = EffectivePolicy()
POLICY_FIELDS = tuple(f.name for f in fields(EffectivePolicy))


@dataclass
class PolicyCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class CancellationCheck:
    can_cancel: bool
    is_late_cancel: bool
    penalty_credits: int
    errors: list[str] = field(default_factory=list)


@dataclass
class DailyLimitCheck:
    valid: bool
    current_count: int
    max_allowed: int
    error: str | None = None


def _fmt_duration(minutes: int) -> str:
    """Format minutes as hours when evenly divisible by 60, otherwise minutes.

    120 -> "2 hours", 60 -> "1 hour", 90 -> "90 minutes"
    """
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{minutes} minutes"


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime(now.year, now.month, 1, tzinfo=UTC)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=UTC)
    return start, end


def _coerce_overrides(academy_id: int, overrides) -> dict[str, int]:
    """Keep only known policy keys with integer values."""
    clean: dict[str, int] = {}
    if not isinstance(overrides, dict):
        logger.warning(
            "Ignoring policy overrides for academy %s: expected an object, got %s",
            academy_id,
            type(overrides).__name__,
        )
        return clean
    for key, value in overrides.items():
        if key not in POLICY_FIELDS:
            logger.warning("Ignoring unknown policy override %r for academy %s", key, academy_id)
            continue
        try:
            clean[key] = int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric policy override %s=%r for academy %s", key, value, academy_id)
    return clean


class PolicyResolver:
    """Resolves and enforces the effective policy for academies.

    One instance per unit of work; resolved policies are memoised per academy
    for the lifetime of the instance.
    """

    def __init__(
        self,
        db: AsyncSession,
        defaults: EffectivePolicy = DEFAULT_POLICY,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.defaults = defaults
        self.clock = clock
        self._cache: dict[int, EffectivePolicy] = {}

    def get_default_policy(self) -> EffectivePolicy:
        return replace(self.defaults)

    async def get_effective_policy(self, academy_id: int) -> EffectivePolicy:
        """Merge defaults, the latest published franchisor policy and academy overrides.

        Never raises: a missing academy, a missing franqueadora link or a
        database error all fall back to the defaults.
        """
        if academy_id in self._cache:
            return self._cache[academy_id]

        try:
            policy = await self._resolve(academy_id)
        except SQLAlchemyError:
            logger.exception("Failed to resolve policy for academy %s, using defaults", academy_id)
            return self.get_default_policy()

        self._cache[academy_id] = policy
        return policy

    async def _resolve(self, academy_id: int) -> EffectivePolicy:
        result = await self.db.execute(select(Academy.franqueadora_id).where(Academy.id == academy_id))
        franqueadora_id = result.scalar_one_or_none()
        if franqueadora_id is None:
            logger.warning("Academy %s not found or has no franqueadora, using default policy", academy_id)
            return self.get_default_policy()

        result = await self.db.execute(
            select(FranchisorPolicy)
            .where(
                FranchisorPolicy.franqueadora_id == franqueadora_id,
                FranchisorPolicy.status == PolicyStatus.PUBLISHED,
            )
            .order_by(FranchisorPolicy.effective_from.desc(), FranchisorPolicy.created_at.desc())
            .limit(1)
        )
        published = result.scalar_one_or_none()

        base = self.defaults
        if published is not None:
            values = {name: getattr(published, name) for name in POLICY_FIELDS}
            base = replace(base, **{k: v for k, v in values.items() if v is not None})

        result = await self.db.execute(
            select(AcademyPolicyOverride.overrides).where(AcademyPolicyOverride.academy_id == academy_id)
        )
        overrides = result.scalar_one_or_none() or {}

        return replace(base, **_coerce_overrides(academy_id, overrides))

    # ------------------------------------------------------------------
    # Validations
    # ------------------------------------------------------------------

    async def validate_booking_creation(
        self,
        academy_id: int,
        start_at: datetime,
        student_id: int | None = None,
    ) -> PolicyCheck:
        policy = await self.get_effective_policy(academy_id)
        now = self.clock()
        errors: list[str] = []

        if policy.student_min_booking_notice_minutes > 0:
            earliest = now + timedelta(minutes=policy.student_min_booking_notice_minutes)
            if start_at < earliest:
                errors.append(
                    f"Bookings require at least {_fmt_duration(policy.student_min_booking_notice_minutes)} notice."
                )

        if policy.max_future_booking_days > 0:
            latest = now + timedelta(days=policy.max_future_booking_days)
            if start_at > latest:
                errors.append(f"Cannot book more than {policy.max_future_booking_days} days in advance.")

        error = await self._check_monthly_cancellations(policy, academy_id, student_id)
        if error:
            errors.append(error)

        return PolicyCheck(valid=not errors, errors=errors)

    async def validate_cancellation(
        self,
        academy_id: int,
        booking_start_at: datetime,
        student_id: int | None = None,
    ) -> CancellationCheck:
        policy = await self.get_effective_policy(academy_id)
        now = self.clock()

        cutoff = booking_start_at - timedelta(minutes=policy.late_cancel_threshold_minutes)
        is_late = now > cutoff

        errors: list[str] = []
        error = await self._check_monthly_cancellations(policy, academy_id, student_id)
        if error:
            errors.append(error)

        return CancellationCheck(
            can_cancel=not errors,
            is_late_cancel=is_late,
            penalty_credits=policy.late_cancel_penalty_credits if is_late else 0,
            errors=errors,
        )

    async def validate_teacher_daily_limit(
        self,
        academy_id: int,
        teacher_id: int,
        day: date | datetime,
    ) -> DailyLimitCheck:
        policy = await self.get_effective_policy(academy_id)
        if policy.teacher_max_daily_classes <= 0:
            return DailyLimitCheck(valid=True, current_count=0, max_allowed=0)

        if isinstance(day, datetime):
            day = day.astimezone(UTC).date()
        day_start = datetime.combine(day, time.min, tzinfo=UTC)
        day_end = datetime.combine(day, time.max, tzinfo=UTC)

        result = await self.db.execute(
            select(func.count(Booking.id)).where(
                Booking.teacher_id == teacher_id,
                Booking.academy_id == academy_id,
                Booking.status_canonical != BookingStatus.CANCELED,
                Booking.start_at >= day_start,
                Booking.start_at <= day_end,
            )
        )
        count = result.scalar_one()

        if count >= policy.teacher_max_daily_classes:
            return DailyLimitCheck(
                valid=False,
                current_count=count,
                max_allowed=policy.teacher_max_daily_classes,
                error=f"Teacher has reached the limit of {policy.teacher_max_daily_classes} classes per day.",
            )
        return DailyLimitCheck(valid=True, current_count=count, max_allowed=policy.teacher_max_daily_classes)

    async def count_monthly_cancellations(self, academy_id: int, student_id: int) -> int:
        """Cancellations by the student at this academy in the current calendar month (UTC)."""
        month_start, month_end = _month_bounds(self.clock())
        result = await self.db.execute(
            select(func.count(BookingCancellation.id)).where(
                BookingCancellation.student_id == student_id,
                BookingCancellation.academy_id == academy_id,
                BookingCancellation.cancelled_at >= month_start,
                BookingCancellation.cancelled_at < month_end,
            )
        )
        return result.scalar_one()

    async def _check_monthly_cancellations(
        self, policy: EffectivePolicy, academy_id: int, student_id: int | None
    ) -> str | None:
        if student_id is None or policy.max_cancel_per_month <= 0:
            return None
        count = await self.count_monthly_cancellations(academy_id, student_id)
        if count >= policy.max_cancel_per_month:
            return f"Monthly limit of {policy.max_cancel_per_month} cancellations reached."
        return None
