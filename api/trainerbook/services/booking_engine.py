"""Booking lifecycle: create, claim, cancel, confirm, complete.

State machine (status_canonical):

    AVAILABLE --create/claim--> PAID --complete--> DONE
    PAID/RESERVED --cancel--> AVAILABLE   (slot goes back into inventory)

Balance effects depend on who booked:

- Student-led: the student spends one class credit at booking time and the
  teacher gets one locked (not yet usable) hour. A free cancellation refunds
  the credit and revokes the hour; a late one keeps the credit and releases
  the hour to the teacher. Completion releases the hour.
- Teacher-led with a student: the teacher spends one available hour. Any
  cancellation refunds it.
- Teacher-led without a student: publishes inventory, no balance effect.

Each public method runs inside the caller's transaction. Academy and teacher
rows are locked FOR UPDATE before the overlap and capacity checks, balance rows
are locked by the ledger, and booking rows carry an optimistic version, so
concurrent requests for the same teacher, unit or student are serialised.

Side effects that must not block the state change (teacher bonus hours,
student/unit links, first-class flags, notifications) run in savepoints; a
failure is logged and returned in BookingResult.warnings.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trainerbook.core.config import Settings, settings
from trainerbook.core.database import flush_or_conflict
from trainerbook.core.exceptions import (
    CapacityExceeded,
    ConfigurationError,
    InsufficientBalance,
    NotFound,
    PolicyViolation,
    TeacherUnavailable,
    TrainerBookError,
    ValidationError,
)
from trainerbook.models.academy import Academy
from trainerbook.models.base import utcnow
from trainerbook.models.booking import OCCUPYING_STATUSES, Booking, BookingCancellation, BookingSource, BookingStatus
from trainerbook.models.member import StudentUnit, TeacherStudent, User
from trainerbook.services.ledger import BalanceLedger
from trainerbook.services.notifier import BookingEventType, Notifier, build_notifier
from trainerbook.services.policy import DEFAULT_POLICY, Clock, EffectivePolicy, PolicyResolver

logger = logging.getLogger(__name__)

# One class credit buys one class; one teacher hour books one class
CLASS_UNITS = 1


@dataclass
class CreateBookingParams:
    source: BookingSource
    teacher_id: int
    academy_id: int
    start_at: datetime
    end_at: datetime
    student_id: int | None = None
    cancellable_until: datetime | None = None
    student_notes: str | None = None
    teacher_notes: str | None = None


@dataclass
class BookingEvent:
    event_type: BookingEventType
    booking_id: int
    teacher_id: int
    student_id: int | None


@dataclass
class BookingResult:
    """The booking after the operation, plus non-fatal problems and pending notifications."""

    booking: Booking
    warnings: list[str] = field(default_factory=list)
    events: list[BookingEvent] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _fmt_interval(booking: Booking) -> str:
    return f"{booking.start_at:%Y-%m-%d %H:%M} to {booking.end_at:%H:%M} UTC"


class BookingEngine:
    def __init__(
        self,
        db: AsyncSession,
        policy: PolicyResolver,
        ledger: BalanceLedger,
        notifier: Notifier,
        config: Settings = settings,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.policy = policy
        self.ledger = ledger
        self.notifier = notifier
        self.config = config
        self.clock = clock

    @classmethod
    def for_session(
        cls,
        db: AsyncSession,
        config: Settings = settings,
        clock: Clock = utcnow,
        notifier: Notifier | None = None,
        defaults: EffectivePolicy | None = None,
    ) -> "BookingEngine":
        """Wire an engine and its collaborators around one session."""
        if defaults is None:
            defaults = replace(
                DEFAULT_POLICY,
                late_cancel_threshold_minutes=config.default_cancellation_window_hours * 60,
            )
        return cls(
            db=db,
            policy=PolicyResolver(db, defaults=defaults, clock=clock),
            ledger=BalanceLedger(db),
            notifier=notifier or build_notifier(config),
            config=config,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Lookups and locks
    # ------------------------------------------------------------------

    async def _get_booking(self, booking_id: int, *, for_update: bool = False) -> Booking:
        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        booking = (await self.db.execute(stmt)).scalar_one_or_none()
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found.")
        return booking

    async def _get_academy(self, academy_id: int, *, for_update: bool = False) -> Academy:
        stmt = select(Academy).where(Academy.id == academy_id)
        if for_update:
            stmt = stmt.with_for_update()
        academy = (await self.db.execute(stmt)).scalar_one_or_none()
        if academy is None:
            raise NotFound(f"Academy {academy_id} not found.")
        return academy

    async def _get_user(self, user_id: int, *, for_update: bool = False) -> User:
        stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
        if for_update:
            stmt = stmt.with_for_update()
        user = (await self.db.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise NotFound(f"User {user_id} not found.")
        return user

    @staticmethod
    def _franqueadora_id(academy: Academy) -> int:
        if academy.franqueadora_id is None:
            raise ConfigurationError(
                f"Academy {academy.id} is not linked to a franqueadora.",
                details={"academy_id": academy.id},
            )
        return academy.franqueadora_id

    def _capacity(self, academy: Academy) -> int:
        if academy.capacity_per_slot is not None:
            return academy.capacity_per_slot
        configured = (academy.config or {}).get("capacity_per_slot")
        if configured is not None:
            return int(configured)
        return self.config.default_capacity_per_slot

    async def _cancellable_until(self, academy_id: int, start_at: datetime, supplied: datetime | None) -> datetime:
        if supplied is not None:
            return _as_utc(supplied)
        policy = await self.policy.get_effective_policy(academy_id)
        return start_at - timedelta(minutes=policy.late_cancel_threshold_minutes)

    # ------------------------------------------------------------------
    # Constraint checks
    # ------------------------------------------------------------------

    def _occupying(self, start_at: datetime, end_at: datetime, exclude_id: int | None):
        """Student-assigned, non-canceled bookings overlapping [start_at, end_at)."""
        conditions = [
            Booking.student_id.is_not(None),
            Booking.status_canonical.in_(OCCUPYING_STATUSES),
            Booking.start_at < end_at,
            Booking.end_at > start_at,
        ]
        if exclude_id is not None:
            conditions.append(Booking.id != exclude_id)
        return conditions

    async def _check_teacher_free(
        self, teacher_id: int, start_at: datetime, end_at: datetime, exclude_id: int | None = None
    ) -> None:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.teacher_id == teacher_id, *self._occupying(start_at, end_at, exclude_id))
            .limit(1)
        )
        conflict = result.scalar_one_or_none()
        if conflict is not None:
            raise TeacherUnavailable(
                f"Teacher already has a class from {_fmt_interval(conflict)}.",
                details={"conflicting_booking_id": conflict.id},
            )

    async def _check_capacity(
        self, academy: Academy, start_at: datetime, end_at: datetime, exclude_id: int | None = None
    ) -> None:
        capacity = self._capacity(academy)
        result = await self.db.execute(
            select(func.count(Booking.id)).where(
                Booking.academy_id == academy.id, *self._occupying(start_at, end_at, exclude_id)
            )
        )
        count = result.scalar_one()
        if count >= capacity:
            raise CapacityExceeded(
                f"This time slot is full at {academy.name} ({count} of {capacity} places taken).",
                details={"capacity": capacity, "booked": count},
            )

    async def _check_policy(self, academy_id: int, start_at: datetime, student_id: int | None) -> None:
        check = await self.policy.validate_booking_creation(academy_id, start_at, student_id)
        if not check.valid:
            raise PolicyViolation(check.errors)

    async def _check_student_credit(self, student_id: int, franqueadora_id: int) -> None:
        balance = await self.ledger.get_student_balance(student_id, franqueadora_id)
        if balance.available < CLASS_UNITS:
            raise InsufficientBalance(
                "Not enough class credits to book this class.",
                details={"available": balance.available, "required": CLASS_UNITS},
            )

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    async def _best_effort(
        self, result: BookingResult, description: str, operation: Callable[[], Awaitable[object]]
    ) -> None:
        """Run a secondary effect in a savepoint; on failure, roll it back and record a warning."""
        try:
            async with self.db.begin_nested():
                await operation()
        except TrainerBookError as exc:
            logger.warning("%s failed for booking %s: %s", description, result.booking.id, exc)
            result.warnings.append(f"{description} failed: {exc}")
        except Exception as exc:
            logger.exception("%s failed for booking %s", description, result.booking.id)
            result.warnings.append(f"{description} failed: {exc}")

    async def _lock_bonus_hour(self, booking: Booking, franqueadora_id: int) -> None:
        await self.ledger.lock_professor_bonus_hours(
            booking.teacher_id,
            franqueadora_id,
            CLASS_UNITS,
            booking.id,
            unlock_at=booking.cancellable_until,
            meta={"student_id": booking.student_id, "reason": "student_booking"},
        )

    async def _release_bonus_hour(self, booking: Booking, franqueadora_id: int, *, forfeit: bool, reason: str) -> None:
        outstanding = await self.ledger.outstanding_bonus_lock(booking.teacher_id, franqueadora_id, booking.id)
        if outstanding <= 0:
            logger.info("No locked hour outstanding for booking %s, nothing to release", booking.id)
            return
        if forfeit:
            await self.ledger.revoke_bonus_lock(
                booking.teacher_id, franqueadora_id, CLASS_UNITS, booking.id, meta={"reason": reason}
            )
        else:
            await self.ledger.unlock_professor_bonus_hours(
                booking.teacher_id, franqueadora_id, CLASS_UNITS, booking.id, meta={"reason": reason}
            )

    async def _touch_student_unit(self, student_id: int, academy_id: int) -> None:
        now = self.clock()
        result = await self.db.execute(
            select(StudentUnit).where(StudentUnit.student_id == student_id, StudentUnit.academy_id == academy_id)
        )
        link = result.scalar_one_or_none()
        if link is None:
            self.db.add(
                StudentUnit(
                    student_id=student_id,
                    academy_id=academy_id,
                    first_booking_at=now,
                    last_booking_at=now,
                    total_bookings=1,
                    active=True,
                )
            )
        else:
            link.last_booking_at = now
            link.total_bookings += 1
            link.active = True
        await flush_or_conflict(self.db)

    async def _set_first_class_used(self, student_id: int, used: bool) -> None:
        # Only writes when the flag actually flips
        await self.db.execute(
            update(User)
            .where(User.id == student_id, User.first_class_used.is_(not used))
            .values(first_class_used=used)
            .execution_options(synchronize_session="fetch")
        )

    async def _reset_first_class_if_idle(self, student_id: int) -> None:
        result = await self.db.execute(
            select(func.count(Booking.id)).where(
                Booking.student_id == student_id,
                Booking.status_canonical.in_([BookingStatus.PAID, BookingStatus.DONE]),
            )
        )
        if result.scalar_one() == 0:
            await self._set_first_class_used(student_id, False)

    async def _is_linked_pair(self, teacher_id: int, student_id: int) -> bool:
        result = await self.db.execute(
            select(TeacherStudent).where(TeacherStudent.teacher_id == teacher_id, TeacherStudent.student_id == student_id)
        )
        link = result.scalar_one_or_none()
        return link is not None and link.is_linked

    @staticmethod
    def _event(booking: Booking, event_type: BookingEventType, student_id: int | None = None) -> BookingEvent:
        return BookingEvent(
            event_type=event_type,
            booking_id=booking.id,
            teacher_id=booking.teacher_id,
            student_id=student_id if student_id is not None else booking.student_id,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_booking(self, params: CreateBookingParams) -> BookingResult:
        start_at = _as_utc(params.start_at)
        end_at = _as_utc(params.end_at)
        if end_at <= start_at:
            raise ValidationError("end_at must be after start_at.")

        if params.source == BookingSource.STUDENT:
            if params.student_id is None:
                raise ValidationError("student_id is required for student-led bookings.")
            return await self._create_student_led(params, start_at, end_at)

        if params.student_id is None:
            return await self._publish_availability(params, start_at, end_at)
        return await self._create_teacher_led(params, start_at, end_at)

    async def _create_student_led(
        self, params: CreateBookingParams, start_at: datetime, end_at: datetime
    ) -> BookingResult:
        academy = await self._get_academy(params.academy_id, for_update=True)
        franqueadora_id = self._franqueadora_id(academy)
        await self._get_user(params.teacher_id, for_update=True)
        await self._get_user(params.student_id)

        await self._check_student_credit(params.student_id, franqueadora_id)
        await self._check_policy(academy.id, start_at, params.student_id)
        await self._check_teacher_free(params.teacher_id, start_at, end_at)
        await self._check_capacity(academy, start_at, end_at)

        cancellable_until = await self._cancellable_until(academy.id, start_at, params.cancellable_until)

        # Reuse the teacher's open slot at this exact time, if one was published
        result = await self.db.execute(
            select(Booking)
            .where(
                Booking.teacher_id == params.teacher_id,
                Booking.academy_id == academy.id,
                Booking.start_at == start_at,
                Booking.status_canonical == BookingStatus.AVAILABLE,
                Booking.student_id.is_(None),
            )
            .order_by(Booking.id)
            .limit(1)
            .with_for_update()
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            booking = Booking(teacher_id=params.teacher_id, academy_id=academy.id, start_at=start_at)
            self.db.add(booking)
        booking.source = BookingSource.STUDENT
        booking.student_id = params.student_id
        booking.end_at = end_at
        booking.status_canonical = BookingStatus.PAID
        booking.cancellable_until = cancellable_until
        booking.student_notes = params.student_notes
        if params.teacher_notes is not None:
            booking.teacher_notes = params.teacher_notes
        await flush_or_conflict(self.db)

        return await self._charge_student_booking(booking, franqueadora_id)

    async def _charge_student_booking(self, booking: Booking, franqueadora_id: int) -> BookingResult:
        await self.ledger.consume_student_classes(
            booking.student_id,
            franqueadora_id,
            CLASS_UNITS,
            booking.id,
            meta={"reason": "booking_created", "teacher_id": booking.teacher_id},
        )

        result = BookingResult(booking=booking)
        await self._best_effort(result, "Locking teacher bonus hour", lambda: self._lock_bonus_hour(booking, franqueadora_id))
        await self._best_effort(
            result, "Linking student to academy", lambda: self._touch_student_unit(booking.student_id, booking.academy_id)
        )
        result.events.append(self._event(booking, BookingEventType.CREATED))
        logger.info(
            "Student %s booked teacher %s at %s (booking %s)",
            booking.student_id, booking.teacher_id, booking.start_at.isoformat(), booking.id,
        )
        return result

    async def _publish_availability(
        self, params: CreateBookingParams, start_at: datetime, end_at: datetime
    ) -> BookingResult:
        academy = await self._get_academy(params.academy_id)
        await self._get_user(params.teacher_id)

        booking = Booking(
            source=BookingSource.TEACHER,
            teacher_id=params.teacher_id,
            academy_id=academy.id,
            start_at=start_at,
            end_at=end_at,
            status_canonical=BookingStatus.AVAILABLE,
            cancellable_until=await self._cancellable_until(academy.id, start_at, params.cancellable_until),
            teacher_notes=params.teacher_notes,
        )
        self.db.add(booking)
        await flush_or_conflict(self.db)
        logger.info("Teacher %s published slot %s at %s", params.teacher_id, booking.id, start_at.isoformat())
        return BookingResult(booking=booking)

    async def _create_teacher_led(
        self, params: CreateBookingParams, start_at: datetime, end_at: datetime
    ) -> BookingResult:
        academy = await self._get_academy(params.academy_id, for_update=True)
        franqueadora_id = self._franqueadora_id(academy)
        await self._get_user(params.teacher_id, for_update=True)
        await self._get_user(params.student_id)

        balance = await self.ledger.get_professor_balance(params.teacher_id, franqueadora_id)
        if balance.available_hours < CLASS_UNITS:
            raise InsufficientBalance(
                "Not enough teacher hours to book this class.",
                details={"available": balance.available_hours, "required": CLASS_UNITS},
            )

        limit = await self.policy.validate_teacher_daily_limit(academy.id, params.teacher_id, start_at)
        if not limit.valid:
            raise PolicyViolation([limit.error])

        await self._check_teacher_free(params.teacher_id, start_at, end_at)
        await self._check_capacity(academy, start_at, end_at)

        # Retire the teacher's stale open slots at this exact time; rows are never deleted
        await self.db.execute(
            update(Booking)
            .where(
                Booking.teacher_id == params.teacher_id,
                Booking.start_at == start_at,
                Booking.status_canonical == BookingStatus.AVAILABLE,
                Booking.student_id.is_(None),
            )
            .values(status_canonical=BookingStatus.CANCELED, version=Booking.version + 1, updated_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )

        booking = Booking(
            source=BookingSource.TEACHER,
            teacher_id=params.teacher_id,
            student_id=params.student_id,
            academy_id=academy.id,
            start_at=start_at,
            end_at=end_at,
            status_canonical=BookingStatus.PAID,
            cancellable_until=await self._cancellable_until(academy.id, start_at, params.cancellable_until),
            student_notes=params.student_notes,
            teacher_notes=params.teacher_notes,
        )
        self.db.add(booking)
        await flush_or_conflict(self.db)

        await self.ledger.spend_professor_hours(
            params.teacher_id,
            franqueadora_id,
            CLASS_UNITS,
            booking.id,
            meta={"reason": "teacher_booking", "student_id": params.student_id},
        )

        result = BookingResult(booking=booking)
        await self._best_effort(
            result, "Linking student to academy", lambda: self._touch_student_unit(booking.student_id, booking.academy_id)
        )
        result.events.append(self._event(booking, BookingEventType.CREATED))
        logger.info(
            "Teacher %s booked student %s at %s (booking %s)",
            params.teacher_id, params.student_id, start_at.isoformat(), booking.id,
        )
        return result

    async def update_booking_to_student(
        self, booking_id: int, student_id: int, student_notes: str | None = None
    ) -> BookingResult:
        """A student claims an open slot the teacher published."""
        snapshot = await self._get_booking(booking_id)
        academy = await self._get_academy(snapshot.academy_id, for_update=True)
        franqueadora_id = self._franqueadora_id(academy)
        await self._get_user(snapshot.teacher_id, for_update=True)
        await self._get_user(student_id)

        booking = await self._get_booking(booking_id, for_update=True)
        if booking.status_canonical != BookingStatus.AVAILABLE or booking.student_id is not None:
            raise TeacherUnavailable(
                "This slot is no longer available.", details={"booking_id": booking.id}
            )

        await self._check_student_credit(student_id, franqueadora_id)
        await self._check_policy(academy.id, booking.start_at, student_id)
        await self._check_teacher_free(booking.teacher_id, booking.start_at, booking.end_at, exclude_id=booking.id)
        await self._check_capacity(academy, booking.start_at, booking.end_at, exclude_id=booking.id)

        booking.source = BookingSource.STUDENT
        booking.student_id = student_id
        booking.status_canonical = BookingStatus.PAID
        booking.cancellable_until = await self._cancellable_until(academy.id, booking.start_at, None)
        booking.student_notes = student_notes
        await flush_or_conflict(self.db)

        return await self._charge_student_booking(booking, franqueadora_id)

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel_booking(self, booking_id: int, actor_id: int | None) -> BookingResult:
        booking = await self._get_booking(booking_id, for_update=True)

        if booking.status_canonical in (BookingStatus.CANCELED, BookingStatus.AVAILABLE) or booking.student_id is None:
            logger.info("Booking %s has no class to cancel (%s)", booking.id, booking.status_canonical.value)
            return BookingResult(booking=booking)
        if booking.status_canonical == BookingStatus.DONE:
            raise ValidationError("Completed classes cannot be cancelled.")

        academy = await self._get_academy(booking.academy_id)
        franqueadora_id = self._franqueadora_id(academy)
        student_id = booking.student_id
        now = self.clock()
        result = BookingResult(booking=booking)
        is_late = False
        penalty = 0

        if booking.source == BookingSource.STUDENT:
            check = await self.policy.validate_cancellation(academy.id, booking.start_at, student_id)
            if not check.can_cancel:
                raise PolicyViolation(check.errors)

            deadline = booking.cancellable_until or await self._cancellable_until(academy.id, booking.start_at, None)
            is_late = now > deadline
            if is_late:
                policy = await self.policy.get_effective_policy(academy.id)
                penalty = policy.late_cancel_penalty_credits
                await self._best_effort(
                    result,
                    "Releasing teacher bonus hour",
                    lambda: self._release_bonus_hour(booking, franqueadora_id, forfeit=False, reason="late_cancellation"),
                )
            else:
                await self.ledger.refund_student_classes(
                    student_id,
                    franqueadora_id,
                    CLASS_UNITS,
                    booking.id,
                    meta={"reason": "free_cancellation", "actor_id": actor_id},
                )
                await self._best_effort(
                    result,
                    "Revoking teacher bonus hour",
                    lambda: self._release_bonus_hour(booking, franqueadora_id, forfeit=True, reason="free_cancellation"),
                )
        else:
            await self.ledger.refund_professor_hours(
                booking.teacher_id,
                franqueadora_id,
                CLASS_UNITS,
                booking.id,
                meta={"reason": "teacher_booking_cancelled", "actor_id": actor_id, "student_id": student_id},
            )

        self.db.add(
            BookingCancellation(
                booking_id=booking.id,
                academy_id=booking.academy_id,
                teacher_id=booking.teacher_id,
                student_id=student_id,
                actor_id=actor_id,
                source=booking.source,
                start_at=booking.start_at,
                is_late=is_late,
                penalty_credits=penalty,
                cancelled_at=now,
            )
        )

        # Recycle the slot into the teacher's open inventory
        booking.status_canonical = BookingStatus.AVAILABLE
        booking.student_id = None
        booking.source = BookingSource.TEACHER
        booking.student_notes = None
        await flush_or_conflict(self.db)

        await self._best_effort(
            result, "Resetting first class flag", lambda: self._reset_first_class_if_idle(student_id)
        )
        result.events.append(self._event(booking, BookingEventType.CANCELLED, student_id=student_id))
        logger.info(
            "Booking %s cancelled by %s (student %s, %s)",
            booking.id, actor_id, student_id, "late" if is_late else "free",
        )
        return result

    # ------------------------------------------------------------------
    # Confirm / complete
    # ------------------------------------------------------------------

    async def confirm_booking(self, booking_id: int) -> BookingResult:
        """Bump a reserved class to PAID. Credits and hours already moved at creation."""
        booking = await self._get_booking(booking_id, for_update=True)
        if booking.status_canonical == BookingStatus.PAID:
            return BookingResult(booking=booking)
        if booking.student_id is None:
            raise ValidationError("Open slots cannot be confirmed.")
        if booking.status_canonical != BookingStatus.RESERVED:
            raise ValidationError(f"A {booking.status_canonical.value} booking cannot be confirmed.")

        booking.status_canonical = BookingStatus.PAID
        await flush_or_conflict(self.db)
        result = BookingResult(booking=booking)
        result.events.append(self._event(booking, BookingEventType.CONFIRMED))
        return result

    async def complete_booking(self, booking_id: int) -> BookingResult:
        booking = await self._get_booking(booking_id, for_update=True)
        if booking.status_canonical == BookingStatus.DONE:
            return BookingResult(booking=booking)
        if booking.student_id is None or booking.status_canonical not in (BookingStatus.RESERVED, BookingStatus.PAID):
            raise ValidationError(f"A {booking.status_canonical.value} slot without a class cannot be completed.")

        academy = await self._get_academy(booking.academy_id)
        franqueadora_id = self._franqueadora_id(academy)

        booking.status_canonical = BookingStatus.DONE
        await flush_or_conflict(self.db)
        result = BookingResult(booking=booking)

        if self.config.completion_consumes_credit and not await self._is_linked_pair(
            booking.teacher_id, booking.student_id
        ):
            await self._best_effort(
                result,
                "Charging class credit on completion",
                lambda: self.ledger.consume_student_classes(
                    booking.student_id,
                    franqueadora_id,
                    CLASS_UNITS,
                    booking.id,
                    meta={"reason": "class_completed"},
                ),
            )

        if booking.source == BookingSource.STUDENT:
            await self._best_effort(
                result,
                "Releasing teacher bonus hour",
                lambda: self._release_bonus_hour(booking, franqueadora_id, forfeit=False, reason="class_completed"),
            )

        await self._best_effort(
            result, "Marking first class used", lambda: self._set_first_class_used(booking.student_id, True)
        )
        result.events.append(self._event(booking, BookingEventType.COMPLETED))
        logger.info("Booking %s completed (teacher %s, student %s)", booking.id, booking.teacher_id, booking.student_id)
        return result

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def publish(self, result: BookingResult) -> list[str]:
        """Deliver the result's events. Call after the transaction is committed."""
        for event in result.events:
            try:
                teacher = await self.db.get(User, event.teacher_id)
                student = await self.db.get(User, event.student_id) if event.student_id else None
                await self.notifier.notify(event.event_type, result.booking, student, teacher)
            except Exception as exc:
                logger.warning("Notification %s for booking %s failed: %s", event.event_type.value, event.booking_id, exc)
                result.warnings.append(f"Notification {event.event_type.value} failed: {exc}")
        result.events.clear()
        return result.warnings
