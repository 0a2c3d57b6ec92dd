from datetime import date, datetime, time
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from academy.core.enums import TicketStatus


class MakeupTicketResponse(BaseModel):
    id: UUID
    student_id: UUID
    class_id: UUID
    feed_id: Optional[UUID] = None
    absence_date: date
    absence_reason: Optional[str] = None
    status: TicketStatus
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[UUID] = None
    completion_note: Optional[str] = None
    makeup_date: Optional[date] = None
    makeup_class_id: Optional[UUID] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class MakeupTicketListResponse(BaseModel):
    total_pending: int
    total_scheduled: int
    total_completed: int
    total_cancelled: int
    tickets: List[MakeupTicketResponse]


class ScheduleTicketRequest(BaseModel):
    scheduled_date: Optional[date] = Field(None, description="Required; the service rejects a missing date")
    scheduled_time: Optional[time] = None


class CompleteTicketRequest(BaseModel):
    note: Optional[str] = None


class CancelTicketRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Required and non-blank")
