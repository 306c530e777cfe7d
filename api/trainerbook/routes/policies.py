"""Effective academy policy."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trainerbook.core.database import get_db
from trainerbook.core.dependencies import get_booking_engine
from trainerbook.core.exceptions import NotFound
from trainerbook.models.academy import Academy
from trainerbook.schemas import EffectivePolicyOut
from trainerbook.services.booking_engine import BookingEngine

router = APIRouter(prefix="/academies", tags=["academies"])


@router.get("/{academy_id}/policy", response_model=EffectivePolicyOut)
async def get_academy_policy(
    academy_id: int,
    db: AsyncSession = Depends(get_db),
    engine: BookingEngine = Depends(get_booking_engine),
):
    if await db.get(Academy, academy_id) is None:
        raise NotFound(f"Academy {academy_id} not found.")
    return await engine.policy.get_effective_policy(academy_id)
