"""Booking routes: create, claim, cancel, confirm, complete.

Each handler runs one engine operation in the request's transaction, commits,
then delivers notifications so a failed email never undoes a booking.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from trainerbook.core.database import get_db
from trainerbook.core.dependencies import get_booking_engine
from trainerbook.core.exceptions import NotFound
from trainerbook.models.booking import Booking
from trainerbook.schemas import BookingCancel, BookingClaim, BookingCreate, BookingOut, BookingResultOut
from trainerbook.services.booking_engine import BookingEngine, BookingResult, CreateBookingParams

router = APIRouter(prefix="/bookings", tags=["bookings"])


async def _commit_and_publish(db: AsyncSession, engine: BookingEngine, result: BookingResult) -> BookingResultOut:
    await db.commit()
    await engine.publish(result)
    return BookingResultOut(booking=BookingOut.model_validate(result.booking), warnings=result.warnings)


@router.post("", response_model=BookingResultOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    db: AsyncSession = Depends(get_db),
    engine: BookingEngine = Depends(get_booking_engine),
):
    result = await engine.create_booking(CreateBookingParams(**body.model_dump()))
    return await _commit_and_publish(db, engine, result)


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(booking_id: int, db: AsyncSession = Depends(get_db)):
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found.")
    return booking


@router.post("/{booking_id}/claim", response_model=BookingResultOut)
async def claim_booking(
    booking_id: int,
    body: BookingClaim,
    db: AsyncSession = Depends(get_db),
    engine: BookingEngine = Depends(get_booking_engine),
):
    result = await engine.update_booking_to_student(booking_id, body.student_id, body.student_notes)
    return await _commit_and_publish(db, engine, result)


@router.post("/{booking_id}/cancel", response_model=BookingResultOut)
async def cancel_booking(
    booking_id: int,
    body: BookingCancel,
    db: AsyncSession = Depends(get_db),
    engine: BookingEngine = Depends(get_booking_engine),
):
    result = await engine.cancel_booking(booking_id, body.actor_id)
    return await _commit_and_publish(db, engine, result)


@router.post("/{booking_id}/confirm", response_model=BookingResultOut)
async def confirm_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    engine: BookingEngine = Depends(get_booking_engine),
):
    result = await engine.confirm_booking(booking_id)
    return await _commit_and_publish(db, engine, result)


@router.post("/{booking_id}/complete", response_model=BookingResultOut)
async def complete_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    engine: BookingEngine = Depends(get_booking_engine),
):
    result = await engine.complete_booking(booking_id)
    return await _commit_and_publish(db, engine, result)
