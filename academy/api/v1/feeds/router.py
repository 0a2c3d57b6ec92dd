from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.schemas import CurrentUser
from academy.core.enums import SessionType
from academy.core.exceptions import ServiceError, error_detail
from academy.db.session import get_db

from . import service
from .schemas import (
    BulkSaveRequest,
    BulkSaveResponse,
    FeedRecordResponse,
    FeedSavePayload,
    FeedSaveResponse,
    PreviousProgressResponse,
)

router = APIRouter(prefix="/api/v1/feeds", tags=["feeds"])


@router.post("/save", response_model=FeedSaveResponse, status_code=status.HTTP_201_CREATED)
async def save_feed(
    payload: FeedSavePayload,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeedSaveResponse:
    """
    Create or update the feed of one student on one date.

    Repeating a request with the same idempotency_key returns the first response.
    Absent records get a makeup ticket when makeup is needed.
    """
    try:
        return await service.save_feed(db, current_user.tenant_id, current_user.id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))


@router.post("/save-bulk", response_model=BulkSaveResponse)
async def save_feeds_bulk(
    payload: BulkSaveRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkSaveResponse:
    """Save many feeds. Items succeed or fail independently; see results for per-item outcomes."""
    return await service.save_feeds_bulk(db, current_user.tenant_id, current_user.id, payload.payloads)


@router.get("/day", response_model=List[FeedRecordResponse])
async def get_day_feeds(
    class_id: UUID,
    feed_date: date = Query(..., alias="date"),
    session_type: Optional[SessionType] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeedRecordResponse]:
    """Saved feeds of a class on a date, regular and makeup sessions unless session_type narrows it."""
    return await service.get_day_feeds(db, current_user.tenant_id, class_id, feed_date, session_type)


@router.get("/previous-progress", response_model=List[PreviousProgressResponse])
async def get_previous_progress(
    student_ids: List[UUID] = Query(...),
    before: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PreviousProgressResponse]:
    """Each student's most recent progress before the given date, shown as a reference on the cards."""
    return await service.get_previous_progress(db, current_user.tenant_id, student_ids, before)


@router.delete("/{feed_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feed(
    feed_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    """Soft delete a feed. Open makeup tickets of a deleted absence are cancelled."""
    try:
        await service.delete_feed(db, current_user.tenant_id, current_user.id, feed_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=error_detail(e))
