"""FastAPI dependencies for injection into route handlers."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trainerbook.core.config import settings
from trainerbook.core.database import get_db
from trainerbook.models.base import utcnow
from trainerbook.services.booking_engine import BookingEngine
from trainerbook.services.ledger import BalanceLedger
from trainerbook.services.policy import Clock


def get_clock() -> Clock:
    """The time source for policy checks. Tests override this to pin "now"."""
    return utcnow


async def get_booking_engine(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> BookingEngine:
    return BookingEngine.for_session(db, config=settings, clock=clock)


async def get_ledger(db: AsyncSession = Depends(get_db)) -> BalanceLedger:
    return BalanceLedger(db)
