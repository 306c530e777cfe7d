"""Operate on bookings and balances from the command line.

Usage:
    python -m scripts.bookings cancel 42 [--actor 7]
    python -m scripts.bookings confirm 42
    python -m scripts.bookings complete 42
    python -m scripts.bookings grant-classes STUDENT_ID FRANQUEADORA_ID QTY [--reason TEXT]
    python -m scripts.bookings grant-hours TEACHER_ID FRANQUEADORA_ID QTY [--reason TEXT]

Each command runs in one transaction. The exit code is 0 on success, otherwise
the exit code of the error raised (see trainerbook.core.exceptions).
"""

import argparse
import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trainerbook.core.config import settings
from trainerbook.core.database import async_session_factory
from trainerbook.core.exceptions import TrainerBookError
from trainerbook.services.booking_engine import BookingEngine, BookingResult
from trainerbook.services.ledger import BalanceLedger


async def _booking_command(db: AsyncSession, args: argparse.Namespace) -> BookingResult:
    engine = BookingEngine.for_session(db, config=settings)
    if args.command == "cancel":
        result = await engine.cancel_booking(args.booking_id, args.actor)
    elif args.command == "confirm":
        result = await engine.confirm_booking(args.booking_id)
    else:
        result = await engine.complete_booking(args.booking_id)
    await db.commit()
    await engine.publish(result)
    return result


async def _grant_command(db: AsyncSession, args: argparse.Namespace) -> None:
    ledger = BalanceLedger(db)
    meta = {"reason": args.reason or "cli_grant"}
    if args.command == "grant-classes":
        entry = await ledger.grant_student_classes(args.owner_id, args.franqueadora_id, args.qty, meta=meta)
        summary = f"Student {args.owner_id}: {entry.balance.available} class(es) available"
    else:
        entry = await ledger.grant_professor_hours(args.owner_id, args.franqueadora_id, args.qty, meta=meta)
        summary = f"Teacher {args.owner_id}: {entry.balance.available_hours} hour(s) available"
    await db.commit()
    print(summary)


async def run(args: argparse.Namespace, session_factory: async_sessionmaker = async_session_factory) -> int:
    async with session_factory() as db:
        try:
            if args.command in ("cancel", "confirm", "complete"):
                result = await _booking_command(db, args)
                booking = result.booking
                print(f"Booking {booking.id}: {booking.status_canonical.value}")
                for warning in result.warnings:
                    print(f"  WARNING: {warning}")
            else:
                await _grant_command(db, args)
        except TrainerBookError as exc:
            await db.rollback()
            print(f"ERROR [{exc.code}]: {exc.message}", file=sys.stderr)
            return exc.exit_code
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TrainerBook booking operations")
    sub = parser.add_subparsers(dest="command", required=True)

    cancel_parser = sub.add_parser("cancel", help="Cancel a class and return the slot to inventory")
    cancel_parser.add_argument("booking_id", type=int)
    cancel_parser.add_argument("--actor", type=int, default=None, help="User id performing the cancellation")

    for name, help_text in (("confirm", "Mark a reserved class as paid"), ("complete", "Mark a class as done")):
        command_parser = sub.add_parser(name, help=help_text)
        command_parser.add_argument("booking_id", type=int)

    for name, help_text in (("grant-classes", "Grant class credits to a student"), ("grant-hours", "Grant hours to a teacher")):
        grant_parser = sub.add_parser(name, help=help_text)
        grant_parser.add_argument("owner_id", type=int)
        grant_parser.add_argument("franqueadora_id", type=int)
        grant_parser.add_argument("qty", type=int)
        grant_parser.add_argument("--reason", default=None)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
