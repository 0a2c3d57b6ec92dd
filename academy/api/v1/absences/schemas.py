from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from academy.core.enums import AbsenceReason


class MonthlyAbsenceCountResponse(BaseModel):
    student_id: UUID
    count: int
    threshold: int
    alert: bool
    month_start: date
    as_of: date


class AbsenceRecordResponse(BaseModel):
    feed_id: UUID
    student_id: UUID
    class_id: UUID
    absence_date: date
    absence_reason: Optional[AbsenceReason] = None
    absence_reason_detail: Optional[str] = None
    notify_parent: bool
    needs_makeup: bool
    monthly_count: int
    alert: bool


class AbsenceListResponse(BaseModel):
    threshold: int
    absences: List[AbsenceRecordResponse]
