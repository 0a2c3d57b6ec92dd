from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.schemas import CurrentUser
from academy.db.session import get_db

from . import service
from .schemas import AbsenceListResponse, MonthlyAbsenceCountResponse

router = APIRouter(prefix="/api/v1/absences", tags=["absences"])


@router.get("", response_model=AbsenceListResponse)
async def list_absences(
    start_date: date,
    end_date: date,
    class_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AbsenceListResponse:
    """Absences in the date range with each student's absence count for the current month."""
    if start_date > end_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_date must be on or before end_date")
    return await service.list_absences(db, current_user.tenant_id, start_date, end_date, class_id)


@router.get("/monthly/{student_id}", response_model=MonthlyAbsenceCountResponse)
async def get_monthly_absence_count(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MonthlyAbsenceCountResponse:
    """Absences of the student since the first of this month and whether the alert threshold is reached."""
    return await service.count_monthly_absences(db, current_user.tenant_id, student_id)
