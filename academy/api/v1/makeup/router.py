from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.schemas import CurrentUser
from academy.core.exceptions import ServiceError, error_detail
from academy.db.session import get_db

from . import service
from .schemas import (
    CancelTicketRequest,
    CompleteTicketRequest,
    MakeupTicketListResponse,
    MakeupTicketResponse,
    ScheduleTicketRequest,
)

router = APIRouter(prefix="/api/v1/makeup", tags=["makeup"])


@router.get("/tickets", response_model=MakeupTicketListResponse)
async def list_tickets(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = "all",
    class_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MakeupTicketListResponse:
    """Makeup tickets by absence date range. status: pending, scheduled, completed, cancelled or all."""
    try:
        return await service.list_tickets(db, current_user.tenant_id, start_date, end_date, status, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.get("/tickets/pending", response_model=List[MakeupTicketResponse])
async def list_open_tickets(
    student_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[MakeupTicketResponse]:
    """Open (pending or scheduled) tickets. Used to pick the ticket a makeup session feed completes."""
    return await service.list_open_tickets(db, current_user.tenant_id, student_id)


@router.get("/tickets/{ticket_id}", response_model=MakeupTicketResponse)
async def get_ticket(
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MakeupTicketResponse:
    try:
        return await service.get_ticket(db, current_user.tenant_id, ticket_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post("/tickets/{ticket_id}/schedule", response_model=MakeupTicketResponse)
async def schedule_ticket(
    ticket_id: UUID,
    payload: ScheduleTicketRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MakeupTicketResponse:
    """Schedule (or reschedule) a makeup session. Allowed while pending or scheduled."""
    try:
        return await service.schedule_ticket(db, current_user.tenant_id, current_user.id, ticket_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post("/tickets/{ticket_id}/complete", response_model=MakeupTicketResponse)
async def complete_ticket(
    ticket_id: UUID,
    payload: CompleteTicketRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MakeupTicketResponse:
    """Mark a makeup as done without a makeup session feed."""
    try:
        return await service.complete_ticket(db, current_user.tenant_id, current_user.id, ticket_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post("/tickets/{ticket_id}/cancel", response_model=MakeupTicketResponse)
async def cancel_ticket(
    ticket_id: UUID,
    payload: CancelTicketRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MakeupTicketResponse:
    """Cancel an open ticket. reason is required."""
    try:
        return await service.cancel_ticket(db, current_user.tenant_id, current_user.id, ticket_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post("/tickets/{ticket_id}/reopen", response_model=MakeupTicketResponse)
async def reopen_ticket(
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MakeupTicketResponse:
    """Move a completed ticket back to pending."""
    try:
        return await service.reopen_ticket(db, current_user.tenant_id, current_user.id, ticket_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))
