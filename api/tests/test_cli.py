"""Command-line tests: commands run in one transaction and map errors to exit codes."""

from scripts.bookings import build_parser, run
from tests.helpers import slot
from trainerbook.models import BookingSource, BookingStatus
from trainerbook.services.booking_engine import CreateBookingParams
from trainerbook.services.ledger import BalanceLedger


async def cli(session_factory, *argv) -> int:
    return await run(build_parser().parse_args(list(argv)), session_factory=session_factory)


async def test_grant_classes(session_factory, world, capsys):
    code = await cli(session_factory, "grant-classes", str(world.student.id), str(world.franqueadora.id), "3")

    assert code == 0
    assert "8 class(es) available" in capsys.readouterr().out
    async with session_factory() as db:
        balance = await BalanceLedger(db).get_student_balance(world.student.id, world.franqueadora.id)
    assert balance.total_purchased == 8


async def test_grant_hours(session_factory, world, capsys):
    code = await cli(
        session_factory, "grant-hours", str(world.teacher.id), str(world.franqueadora.id), "2", "--reason", "bonus"
    )

    assert code == 0
    assert "5 hour(s) available" in capsys.readouterr().out


async def test_complete_booking(session_factory, engine, db, world, capsys):
    start_at, end_at = slot()
    result = await engine.create_booking(
        CreateBookingParams(
            source=BookingSource.STUDENT,
            teacher_id=world.teacher.id,
            academy_id=world.academy.id,
            start_at=start_at,
            end_at=end_at,
            student_id=world.student.id,
        )
    )
    booking_id = result.booking.id
    await db.commit()

    code = await cli(session_factory, "complete", str(booking_id))

    assert code == 0
    assert f"Booking {booking_id}: {BookingStatus.DONE.value}" in capsys.readouterr().out


async def test_unknown_booking_exit_code(session_factory, world, capsys):
    code = await cli(session_factory, "cancel", "9999", "--actor", str(world.student.id))

    assert code == 6
    assert "ERROR [NotFound]" in capsys.readouterr().err


async def test_confirming_open_slot_exit_code(session_factory, engine, db, world):
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
    await db.commit()

    code = await cli(session_factory, "confirm", str(result.booking.id))

    assert code == 2
