"""Student class credit and teacher hour balances: read, grant, history."""

from fastapi import APIRouter, Depends, Query, status

from trainerbook.core.dependencies import get_ledger
from trainerbook.schemas import (
    BalanceGrant,
    HourTransactionOut,
    StudentBalanceOut,
    StudentTransactionOut,
    TeacherBalanceOut,
)
from trainerbook.services.ledger import BalanceLedger

router = APIRouter(prefix="/balances", tags=["balances"])


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------


@router.get("/students/{student_id}", response_model=StudentBalanceOut)
async def get_student_balance(
    student_id: int,
    franqueadora_id: int = Query(...),
    ledger: BalanceLedger = Depends(get_ledger),
):
    return await ledger.get_student_balance(student_id, franqueadora_id)


@router.post("/students/{student_id}", response_model=StudentBalanceOut, status_code=status.HTTP_201_CREATED)
async def grant_student_classes(
    student_id: int,
    body: BalanceGrant,
    ledger: BalanceLedger = Depends(get_ledger),
):
    entry = await ledger.grant_student_classes(
        student_id, body.franqueadora_id, body.qty, meta={"reason": body.reason or "manual_grant"}
    )
    return entry.balance


@router.get("/students/{student_id}/transactions", response_model=list[StudentTransactionOut])
async def list_student_transactions(
    student_id: int,
    franqueadora_id: int = Query(...),
    booking_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    ledger: BalanceLedger = Depends(get_ledger),
):
    return await ledger.list_student_transactions(student_id, franqueadora_id, booking_id, limit)


# ---------------------------------------------------------------------------
# Teachers
# ---------------------------------------------------------------------------


@router.get("/teachers/{teacher_id}", response_model=TeacherBalanceOut)
async def get_teacher_balance(
    teacher_id: int,
    franqueadora_id: int = Query(...),
    ledger: BalanceLedger = Depends(get_ledger),
):
    return await ledger.get_professor_balance(teacher_id, franqueadora_id)


@router.post("/teachers/{teacher_id}", response_model=TeacherBalanceOut, status_code=status.HTTP_201_CREATED)
async def grant_teacher_hours(
    teacher_id: int,
    body: BalanceGrant,
    ledger: BalanceLedger = Depends(get_ledger),
):
    entry = await ledger.grant_professor_hours(
        teacher_id, body.franqueadora_id, body.qty, meta={"reason": body.reason or "manual_grant"}
    )
    return entry.balance


@router.get("/teachers/{teacher_id}/transactions", response_model=list[HourTransactionOut])
async def list_teacher_transactions(
    teacher_id: int,
    franqueadora_id: int = Query(...),
    booking_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    ledger: BalanceLedger = Depends(get_ledger),
):
    return await ledger.list_hour_transactions(teacher_id, franqueadora_id, booking_id, limit)
