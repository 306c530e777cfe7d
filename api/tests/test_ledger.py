"""Ledger tests: balance counters and transaction log move together."""

import pytest
from sqlalchemy import func, select

from tests.helpers import slot
from trainerbook.core.exceptions import InsufficientBalance, ValidationError
from trainerbook.models import (
    BookingSource,
    Franqueadora,
    HourTransaction,
    StudentClassBalance,
    StudentClassTransaction,
    TransactionSource,
    TransactionType,
)
from trainerbook.services.booking_engine import CreateBookingParams


async def test_balance_row_is_created_on_first_read(ledger, db, world):
    balance = await ledger.get_professor_balance(world.other_teacher.id, world.franqueadora.id)

    assert (balance.available_hours, balance.locked_hours) == (0, 0)
    assert balance.id is not None

    again = await ledger.get_professor_balance(world.other_teacher.id, world.franqueadora.id)
    assert again.id == balance.id


async def test_grant_and_consume_classes(ledger, world):
    entry = await ledger.grant_student_classes(world.student.id, world.franqueadora.id, 3, meta={"order": "A-1"})
    assert entry.balance.total_purchased == 8
    assert entry.transaction.type == TransactionType.GRANT
    assert entry.transaction.meta == {"order": "A-1"}

    entry = await ledger.consume_student_classes(world.student.id, world.franqueadora.id, 2, booking_id=None)
    assert entry.balance.total_consumed == 2
    assert entry.balance.available == 6
    assert entry.transaction.source == TransactionSource.STUDENT


async def test_consume_more_than_available_fails_without_side_effects(ledger, db, world):
    with pytest.raises(InsufficientBalance) as exc_info:
        await ledger.consume_student_classes(world.student.id, world.franqueadora.id, 6, booking_id=None)

    assert exc_info.value.details == {"available": 5, "required": 6}
    balance = await ledger.get_student_balance(world.student.id, world.franqueadora.id)
    assert balance.total_consumed == 0
    count = (
        await db.execute(
            select(func.count(StudentClassTransaction.id)).where(
                StudentClassTransaction.type == TransactionType.CONSUME
            )
        )
    ).scalar_one()
    assert count == 0


async def test_available_accounts_for_locked_quantity(ledger, world):
    balance = await ledger.update_student_balance(world.student.id, world.franqueadora.id, locked_qty=2)

    assert balance.available == 3
    with pytest.raises(InsufficientBalance):
        await ledger.consume_student_classes(world.student.id, world.franqueadora.id, 4, booking_id=None)


async def test_refund_cannot_exceed_consumed(ledger, world):
    with pytest.raises(ValidationError):
        await ledger.refund_student_classes(world.student.id, world.franqueadora.id, 1, booking_id=None)


async def test_quantity_must_be_positive(ledger, world):
    with pytest.raises(ValidationError):
        await ledger.grant_student_classes(world.student.id, world.franqueadora.id, 0)
    with pytest.raises(ValidationError):
        await ledger.create_hour_transaction(world.teacher.id, world.franqueadora.id, TransactionType.GRANT, -1)


async def test_update_balance_rejects_negative_counters(ledger, world):
    with pytest.raises(ValidationError):
        await ledger.update_professor_balance(world.teacher.id, world.franqueadora.id, available_hours=-1)


async def test_create_transaction_only_logs(ledger, world):
    txn = await ledger.create_student_transaction(
        world.student.id, world.franqueadora.id, TransactionType.EXPIRED, 1, meta={"note": "imported"}
    )

    assert txn.id is not None
    balance = await ledger.get_student_balance(world.student.id, world.franqueadora.id)
    assert (balance.total_purchased, balance.total_consumed) == (5, 0)


async def test_hour_lock_unlock_cycle(ledger, world):
    teacher, franq = world.teacher.id, world.franqueadora.id

    entry = await ledger.lock_professor_bonus_hours(teacher, franq, 1, booking_id=None, unlock_at=None)
    assert (entry.balance.available_hours, entry.balance.locked_hours) == (3, 1)
    assert entry.balance.available == 2

    entry = await ledger.unlock_professor_bonus_hours(teacher, franq, 1, booking_id=None)
    assert (entry.balance.available_hours, entry.balance.locked_hours) == (4, 0)

    with pytest.raises(InsufficientBalance):
        await ledger.revoke_bonus_lock(teacher, franq, 1, booking_id=None)


async def test_spend_and_refund_hours(ledger, world):
    teacher, franq = world.teacher.id, world.franqueadora.id

    entry = await ledger.spend_professor_hours(teacher, franq, 3, booking_id=None)
    assert entry.balance.available_hours == 0
    assert entry.transaction.source == TransactionSource.TEACHER

    with pytest.raises(InsufficientBalance):
        await ledger.spend_professor_hours(teacher, franq, 1, booking_id=None)

    entry = await ledger.refund_professor_hours(teacher, franq, 2, booking_id=None)
    assert entry.balance.available_hours == 2


async def test_outstanding_lock_nets_out_cycles(ledger, engine, world):
    # A real booking id, so the transactions have something to point at
    start_at, end_at = slot()
    result = await engine.create_booking(
        CreateBookingParams(
            source=BookingSource.TEACHER,
            teacher_id=world.teacher.id,
            academy_id=world.academy.id,
            start_at=start_at,
            end_at=end_at,
        )
    )
    teacher, franq, booking_id = world.teacher.id, world.franqueadora.id, result.booking.id

    assert await ledger.outstanding_bonus_lock(teacher, franq, booking_id) == 0

    await ledger.lock_professor_bonus_hours(teacher, franq, 1, booking_id, unlock_at=None)
    await ledger.revoke_bonus_lock(teacher, franq, 1, booking_id)
    await ledger.lock_professor_bonus_hours(teacher, franq, 1, booking_id, unlock_at=None)
    assert await ledger.outstanding_bonus_lock(teacher, franq, booking_id) == 1

    await ledger.unlock_professor_bonus_hours(teacher, franq, 1, booking_id)
    assert await ledger.outstanding_bonus_lock(teacher, franq, booking_id) == 0


async def test_list_transactions_newest_first(ledger, world):
    teacher, franq = world.teacher.id, world.franqueadora.id
    await ledger.spend_professor_hours(teacher, franq, 1, booking_id=None)
    await ledger.refund_professor_hours(teacher, franq, 1, booking_id=None)

    txns = await ledger.list_hour_transactions(teacher, franq)

    assert [t.type for t in txns] == [TransactionType.REFUND, TransactionType.CONSUME, TransactionType.GRANT]
    assert all(isinstance(t, HourTransaction) for t in txns)

    limited = await ledger.list_hour_transactions(teacher, franq, limit=1)
    assert len(limited) == 1


async def test_balances_are_scoped_per_franqueadora(ledger, db, world):
    other = Franqueadora(name="Other")
    db.add(other)
    await db.flush()

    balance = await ledger.get_student_balance(world.student.id, other.id)

    assert balance.available == 0
    rows = (
        await db.execute(select(func.count(StudentClassBalance.id)).where(StudentClassBalance.student_id == world.student.id))
    ).scalar_one()
    assert rows == 2
