"""Class credit and teacher hour ledger.

Two balances live here: a student's class credits and a teacher's hours,
each per franqueadora. Every mutation locks the balance row
(SELECT ... FOR UPDATE), checks the precondition, adjusts the counter and
appends the transaction in the same flush, so the counters and the audit
trail cannot drift apart. Balance rows also carry an optimistic version
column; a concurrent writer surfaces as ConcurrencyConflict.
"""

import logging
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trainerbook.core.database import flush_or_conflict
from trainerbook.core.exceptions import InsufficientBalance, ValidationError
from trainerbook.models.credit import (
    HourTransaction,
    ProfessorHourBalance,
    StudentClassBalance,
    StudentClassTransaction,
    TransactionSource,
    TransactionType,
)

logger = logging.getLogger(__name__)


class StudentLedgerEntry(NamedTuple):
    balance: StudentClassBalance
    transaction: StudentClassTransaction


class HourLedgerEntry(NamedTuple):
    balance: ProfessorHourBalance
    transaction: HourTransaction


def _require_positive(qty: int) -> None:
    if qty <= 0:
        raise ValidationError(f"Quantity must be positive, got {qty}.")


class BalanceLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Student class balance
    # ------------------------------------------------------------------

    async def get_student_balance(
        self, student_id: int, franqueadora_id: int, *, for_update: bool = False
    ) -> StudentClassBalance:
        """Read the balance, creating a zero row on first access."""
        stmt = select(StudentClassBalance).where(
            StudentClassBalance.student_id == student_id,
            StudentClassBalance.franqueadora_id == franqueadora_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        balance = (await self.db.execute(stmt)).scalar_one_or_none()
        if balance is not None:
            return balance

        try:
            async with self.db.begin_nested():
                balance = StudentClassBalance(
                    student_id=student_id,
                    franqueadora_id=franqueadora_id,
                    total_purchased=0,
                    total_consumed=0,
                    locked_qty=0,
                )
                self.db.add(balance)
        except IntegrityError:
            # Created concurrently by another request
            balance = (await self.db.execute(stmt)).scalar_one()
        return balance

    async def create_student_transaction(
        self,
        student_id: int,
        franqueadora_id: int,
        txn_type: TransactionType,
        qty: int,
        source: TransactionSource = TransactionSource.SYSTEM,
        booking_id: int | None = None,
        meta: dict | None = None,
        unlock_at: datetime | None = None,
    ) -> StudentClassTransaction:
        """Append a log entry without touching the counters."""
        _require_positive(qty)
        txn = StudentClassTransaction(
            student_id=student_id,
            franqueadora_id=franqueadora_id,
            type=txn_type,
            source=source,
            qty=qty,
            booking_id=booking_id,
            meta=meta or {},
            unlock_at=unlock_at,
        )
        self.db.add(txn)
        await flush_or_conflict(self.db)
        return txn

    async def update_student_balance(
        self,
        student_id: int,
        franqueadora_id: int,
        *,
        total_purchased: int | None = None,
        total_consumed: int | None = None,
        locked_qty: int | None = None,
    ) -> StudentClassBalance:
        """Set counters directly. Prefer the intent operations below."""
        balance = await self.get_student_balance(student_id, franqueadora_id, for_update=True)
        updates = {"total_purchased": total_purchased, "total_consumed": total_consumed, "locked_qty": locked_qty}
        for name, value in updates.items():
            if value is None:
                continue
            if value < 0:
                raise ValidationError(f"{name} cannot be negative.")
            setattr(balance, name, value)
        await flush_or_conflict(self.db)
        return balance

    async def _apply_student(
        self,
        student_id: int,
        franqueadora_id: int,
        txn_type: TransactionType,
        qty: int,
        source: TransactionSource,
        booking_id: int | None,
        meta: dict | None,
    ) -> StudentLedgerEntry:
        _require_positive(qty)
        balance = await self.get_student_balance(student_id, franqueadora_id, for_update=True)

        if txn_type == TransactionType.GRANT:
            balance.total_purchased += qty
        elif txn_type == TransactionType.CONSUME:
            if balance.available < qty:
                raise InsufficientBalance(
                    f"Insufficient class credits. Available: {balance.available}, required: {qty}.",
                    details={"available": balance.available, "required": qty},
                )
            balance.total_consumed += qty
        elif txn_type == TransactionType.REFUND:
            if balance.total_consumed < qty:
                raise ValidationError(
                    f"Cannot refund {qty} classes, only {balance.total_consumed} consumed.",
                )
            balance.total_consumed -= qty
        else:
            raise ValidationError(f"Unsupported student transaction type {txn_type}.")

        txn = StudentClassTransaction(
            student_id=student_id,
            franqueadora_id=franqueadora_id,
            type=txn_type,
            source=source,
            qty=qty,
            booking_id=booking_id,
            meta=meta or {},
        )
        self.db.add(txn)
        await flush_or_conflict(self.db)
        logger.info(
            "Student %s %s %s class(es) franqueadora=%s booking=%s",
            student_id, txn_type.value, qty, franqueadora_id, booking_id,
        )
        return StudentLedgerEntry(balance, txn)

    async def grant_student_classes(
        self,
        student_id: int,
        franqueadora_id: int,
        qty: int,
        source: TransactionSource = TransactionSource.SYSTEM,
        meta: dict | None = None,
    ) -> StudentLedgerEntry:
        """Add purchased (or manually granted) classes."""
        return await self._apply_student(
            student_id, franqueadora_id, TransactionType.GRANT, qty, source, None, meta
        )

    async def consume_student_classes(
        self,
        student_id: int,
        franqueadora_id: int,
        qty: int,
        booking_id: int | None,
        meta: dict | None = None,
        source: TransactionSource = TransactionSource.STUDENT,
    ) -> StudentLedgerEntry:
        """Spend classes. Raises InsufficientBalance instead of going negative."""
        return await self._apply_student(
            student_id, franqueadora_id, TransactionType.CONSUME, qty, source, booking_id, meta
        )

    async def refund_student_classes(
        self,
        student_id: int,
        franqueadora_id: int,
        qty: int,
        booking_id: int | None,
        meta: dict | None = None,
        source: TransactionSource = TransactionSource.SYSTEM,
    ) -> StudentLedgerEntry:
        """Give back consumed classes: REFUND entry and total_consumed decrement in one step."""
        return await self._apply_student(
            student_id, franqueadora_id, TransactionType.REFUND, qty, source, booking_id, meta
        )

    async def list_student_transactions(
        self,
        student_id: int,
        franqueadora_id: int,
        booking_id: int | None = None,
        limit: int = 50,
    ) -> list[StudentClassTransaction]:
        stmt = select(StudentClassTransaction).where(
            StudentClassTransaction.student_id == student_id,
            StudentClassTransaction.franqueadora_id == franqueadora_id,
        )
        if booking_id is not None:
            stmt = stmt.where(StudentClassTransaction.booking_id == booking_id)
        stmt = stmt.order_by(StudentClassTransaction.created_at.desc(), StudentClassTransaction.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Teacher hour balance
    # ------------------------------------------------------------------

    async def get_professor_balance(
        self, teacher_id: int, franqueadora_id: int, *, for_update: bool = False
    ) -> ProfessorHourBalance:
        """Read the balance, creating a zero row on first access."""
        stmt = select(ProfessorHourBalance).where(
            ProfessorHourBalance.teacher_id == teacher_id,
            ProfessorHourBalance.franqueadora_id == franqueadora_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        balance = (await self.db.execute(stmt)).scalar_one_or_none()
        if balance is not None:
            return balance

        try:
            async with self.db.begin_nested():
                balance = ProfessorHourBalance(
                    teacher_id=teacher_id,
                    franqueadora_id=franqueadora_id,
                    available_hours=0,
                    locked_hours=0,
                )
                self.db.add(balance)
        except IntegrityError:
            balance = (await self.db.execute(stmt)).scalar_one()
        return balance

    async def create_hour_transaction(
        self,
        teacher_id: int,
        franqueadora_id: int,
        txn_type: TransactionType,
        qty: int,
        source: TransactionSource = TransactionSource.SYSTEM,
        booking_id: int | None = None,
        meta: dict | None = None,
        unlock_at: datetime | None = None,
    ) -> HourTransaction:
        """Append a log entry without touching the counters."""
        _require_positive(qty)
        txn = HourTransaction(
            teacher_id=teacher_id,
            franqueadora_id=franqueadora_id,
            type=txn_type,
            source=source,
            qty=qty,
            booking_id=booking_id,
            meta=meta or {},
            unlock_at=unlock_at,
        )
        self.db.add(txn)
        await flush_or_conflict(self.db)
        return txn

    async def update_professor_balance(
        self,
        teacher_id: int,
        franqueadora_id: int,
        *,
        available_hours: int | None = None,
        locked_hours: int | None = None,
    ) -> ProfessorHourBalance:
        """Set counters directly. Prefer the intent operations below."""
        balance = await self.get_professor_balance(teacher_id, franqueadora_id, for_update=True)
        if available_hours is not None:
            if available_hours < 0:
                raise ValidationError("available_hours cannot be negative.")
            balance.available_hours = available_hours
        if locked_hours is not None:
            if locked_hours < 0:
                raise ValidationError("locked_hours cannot be negative.")
            balance.locked_hours = locked_hours
        await flush_or_conflict(self.db)
        return balance

    async def _apply_hours(
        self,
        teacher_id: int,
        franqueadora_id: int,
        txn_type: TransactionType,
        qty: int,
        source: TransactionSource,
        booking_id: int | None,
        meta: dict | None,
        unlock_at: datetime | None = None,
    ) -> HourLedgerEntry:
        _require_positive(qty)
        balance = await self.get_professor_balance(teacher_id, franqueadora_id, for_update=True)

        if txn_type == TransactionType.GRANT:
            balance.available_hours += qty
        elif txn_type == TransactionType.CONSUME:
            if balance.available_hours < qty:
                raise InsufficientBalance(
                    f"Insufficient teacher hours. Available: {balance.available_hours}, required: {qty}.",
                    details={"available": balance.available_hours, "required": qty},
                )
            balance.available_hours -= qty
        elif txn_type == TransactionType.REFUND:
            balance.available_hours += qty
        elif txn_type == TransactionType.LOCK:
            balance.locked_hours += qty
        elif txn_type in (TransactionType.UNLOCK, TransactionType.REVOKE):
            if balance.locked_hours < qty:
                raise InsufficientBalance(
                    f"Not enough locked hours. Locked: {balance.locked_hours}, required: {qty}.",
                    details={"locked": balance.locked_hours, "required": qty},
                )
            balance.locked_hours -= qty
            if txn_type == TransactionType.UNLOCK:
                balance.available_hours += qty
        else:
            raise ValidationError(f"Unsupported hour transaction type {txn_type}.")

        txn = HourTransaction(
            teacher_id=teacher_id,
            franqueadora_id=franqueadora_id,
            type=txn_type,
            source=source,
            qty=qty,
            booking_id=booking_id,
            meta=meta or {},
            unlock_at=unlock_at,
        )
        self.db.add(txn)
        await flush_or_conflict(self.db)
        logger.info(
            "Teacher %s %s %s hour(s) franqueadora=%s booking=%s",
            teacher_id, txn_type.value, qty, franqueadora_id, booking_id,
        )
        return HourLedgerEntry(balance, txn)

    async def grant_professor_hours(
        self,
        teacher_id: int,
        franqueadora_id: int,
        qty: int,
        source: TransactionSource = TransactionSource.SYSTEM,
        meta: dict | None = None,
    ) -> HourLedgerEntry:
        return await self._apply_hours(teacher_id, franqueadora_id, TransactionType.GRANT, qty, source, None, meta)

    async def spend_professor_hours(
        self,
        teacher_id: int,
        franqueadora_id: int,
        qty: int,
        booking_id: int | None,
        meta: dict | None = None,
    ) -> HourLedgerEntry:
        """A teacher pays hours to book a class for a student."""
        return await self._apply_hours(
            teacher_id, franqueadora_id, TransactionType.CONSUME, qty, TransactionSource.TEACHER, booking_id, meta
        )

    async def refund_professor_hours(
        self,
        teacher_id: int,
        franqueadora_id: int,
        qty: int,
        booking_id: int | None,
        meta: dict | None = None,
    ) -> HourLedgerEntry:
        return await self._apply_hours(
            teacher_id, franqueadora_id, TransactionType.REFUND, qty, TransactionSource.SYSTEM, booking_id, meta
        )

    async def lock_professor_bonus_hours(
        self,
        teacher_id: int,
        franqueadora_id: int,
        qty: int,
        booking_id: int,
        unlock_at: datetime | None,
        meta: dict | None = None,
    ) -> HourLedgerEntry:
        """Credit an hour earned from a student-led class, unusable until the class happens."""
        return await self._apply_hours(
            teacher_id, franqueadora_id, TransactionType.LOCK, qty, TransactionSource.SYSTEM, booking_id, meta,
            unlock_at=unlock_at,
        )

    async def unlock_professor_bonus_hours(
        self,
        teacher_id: int,
        franqueadora_id: int,
        qty: int,
        booking_id: int,
        meta: dict | None = None,
    ) -> HourLedgerEntry:
        """Move locked hours into available hours."""
        return await self._apply_hours(
            teacher_id, franqueadora_id, TransactionType.UNLOCK, qty, TransactionSource.SYSTEM, booking_id, meta
        )

    async def revoke_bonus_lock(
        self,
        teacher_id: int,
        franqueadora_id: int,
        qty: int,
        booking_id: int,
        meta: dict | None = None,
    ) -> HourLedgerEntry:
        """Forfeit locked hours without crediting them."""
        return await self._apply_hours(
            teacher_id, franqueadora_id, TransactionType.REVOKE, qty, TransactionSource.SYSTEM, booking_id, meta
        )

    async def outstanding_bonus_lock(self, teacher_id: int, franqueadora_id: int, booking_id: int) -> int:
        """Hours still locked for a booking: LOCK minus UNLOCK and REVOKE entries.

        Booking rows are recycled after cancellation, so a booking id can carry
        several lock cycles; this nets them out.
        """
        result = await self.db.execute(
            select(HourTransaction.type, func.coalesce(func.sum(HourTransaction.qty), 0))
            .where(
                HourTransaction.teacher_id == teacher_id,
                HourTransaction.franqueadora_id == franqueadora_id,
                HourTransaction.booking_id == booking_id,
                HourTransaction.type.in_(
                    [TransactionType.LOCK, TransactionType.UNLOCK, TransactionType.REVOKE]
                ),
            )
            .group_by(HourTransaction.type)
        )
        totals = {row[0]: row[1] for row in result.all()}
        return (
            totals.get(TransactionType.LOCK, 0)
            - totals.get(TransactionType.UNLOCK, 0)
            - totals.get(TransactionType.REVOKE, 0)
        )

    async def list_hour_transactions(
        self,
        teacher_id: int,
        franqueadora_id: int,
        booking_id: int | None = None,
        limit: int = 50,
    ) -> list[HourTransaction]:
        stmt = select(HourTransaction).where(
            HourTransaction.teacher_id == teacher_id,
            HourTransaction.franqueadora_id == franqueadora_id,
        )
        if booking_id is not None:
            stmt = stmt.where(HourTransaction.booking_id == booking_id)
        stmt = stmt.order_by(HourTransaction.created_at.desc(), HourTransaction.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
