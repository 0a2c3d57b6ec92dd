from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from academy.core.enums import AbsenceReason, AttendanceStatus
from academy.feed_input.schemas import ProgressEntry


class FeedValueIn(BaseModel):
    set_id: UUID
    option_id: UUID


class ExamScoreIn(BaseModel):
    set_id: UUID
    score: float


class FeedSavePayload(BaseModel):
    """Save primitive input. idempotency_key is the caller's correlation id for this submission."""

    student_id: UUID
    class_id: UUID
    feed_date: date
    attendance_status: AttendanceStatus
    absence_reason: Optional[AbsenceReason] = None
    absence_reason_detail: Optional[str] = None
    notify_parent: bool = False
    needs_makeup: Optional[bool] = Field(None, description="Override of the tenant default for the absence reason")
    is_makeup: bool = False
    makeup_ticket_id: Optional[UUID] = None
    progress_text: Optional[str] = None
    progress_entries: List[ProgressEntry] = Field(default_factory=list)
    feed_values: List[FeedValueIn] = Field(default_factory=list)
    exam_scores: List[ExamScoreIn] = Field(default_factory=list)
    memo_values: Dict[str, str] = Field(default_factory=dict)
    idempotency_key: str = Field(..., min_length=8, max_length=100)
    expected_version: Optional[int] = Field(None, description="Reject with 409 if the stored version differs")


class FeedSaveResponse(BaseModel):
    success: bool
    feed_id: Optional[UUID] = None
    version: Optional[int] = None
    makeup_ticket_id: Optional[UUID] = None
    error: Optional[str] = None
    rule: Optional[str] = None


class BulkSaveItemResult(BaseModel):
    student_id: UUID
    idempotency_key: str
    success: bool
    feed_id: Optional[UUID] = None
    version: Optional[int] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class BulkSaveRequest(BaseModel):
    payloads: List[FeedSavePayload] = Field(..., min_length=1)


class BulkSaveResponse(BaseModel):
    success: bool
    results: List[BulkSaveItemResult]
    total_saved: int
    total_failed: int


class FeedValueOut(BaseModel):
    set_id: UUID
    option_id: Optional[UUID] = None
    score: Optional[float] = None


class FeedRecordResponse(BaseModel):
    id: UUID
    student_id: UUID
    class_id: UUID
    feed_date: date
    attendance_status: AttendanceStatus
    absence_reason: Optional[AbsenceReason] = None
    absence_reason_detail: Optional[str] = None
    notify_parent: bool
    needs_makeup: bool
    is_makeup: bool
    session_type: str
    makeup_ticket_id: Optional[UUID] = None
    progress_text: Optional[str] = None
    progress_entries: List[ProgressEntry] = Field(default_factory=list)
    memo_values: Dict[str, str] = Field(default_factory=dict)
    values: List[FeedValueOut] = Field(default_factory=list)
    version: int
    updated_at: datetime


class PreviousProgressResponse(BaseModel):
    """Most recent progress a student had before the date being edited."""

    student_id: UUID
    feed_date: date
    progress_text: Optional[str] = None
    progress_entries: List[ProgressEntry] = Field(default_factory=list)
