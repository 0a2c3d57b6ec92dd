"""Absence listing and the per-student monthly absence count."""

from datetime import date
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.api.v1.feed_config.service import get_feed_settings
from academy.core.enums import AttendanceStatus
from academy.core.models import StudentFeed

from .schemas import AbsenceListResponse, AbsenceRecordResponse, MonthlyAbsenceCountResponse


def _absent_filter(tenant_id: UUID):
    # Makeup sessions never count toward attendance statistics.
    return (
        StudentFeed.tenant_id == tenant_id,
        StudentFeed.attendance_status == AttendanceStatus.ABSENT.value,
        StudentFeed.is_counted_in_stats.is_(True),
        StudentFeed.deleted_at.is_(None),
    )


async def count_monthly_absences(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    today: Optional[date] = None,
) -> MonthlyAbsenceCountResponse:
    """Absent records of the student from the first of the month through today."""
    today = today or date.today()
    month_start = today.replace(day=1)
    result = await db.execute(
        select(func.count(func.distinct(StudentFeed.feed_date))).where(
            *_absent_filter(tenant_id),
            StudentFeed.student_id == student_id,
            StudentFeed.feed_date >= month_start,
            StudentFeed.feed_date <= today,
        )
    )
    count = result.scalar_one() or 0
    threshold = (await get_feed_settings(db, tenant_id)).absence_alert_threshold
    return MonthlyAbsenceCountResponse(
        student_id=student_id,
        count=count,
        threshold=threshold,
        alert=count >= threshold,
        month_start=month_start,
        as_of=today,
    )


async def list_absences(
    db: AsyncSession,
    tenant_id: UUID,
    start_date: date,
    end_date: date,
    class_id: Optional[UUID] = None,
    today: Optional[date] = None,
) -> AbsenceListResponse:
    """Absent records in the range, each with the student's count for the current month."""
    q = select(StudentFeed).where(
        *_absent_filter(tenant_id),
        StudentFeed.feed_date >= start_date,
        StudentFeed.feed_date <= end_date,
    )
    if class_id:
        q = q.where(StudentFeed.class_id == class_id)
    result = await db.execute(q.order_by(StudentFeed.feed_date.desc()))
    feeds = result.scalars().all()

    counts: Dict[UUID, MonthlyAbsenceCountResponse] = {}
    for f in feeds:
        if f.student_id not in counts:
            counts[f.student_id] = await count_monthly_absences(db, tenant_id, f.student_id, today)
    threshold = (await get_feed_settings(db, tenant_id)).absence_alert_threshold
    return AbsenceListResponse(
        threshold=threshold,
        absences=[
            AbsenceRecordResponse(
                feed_id=f.id,
                student_id=f.student_id,
                class_id=f.class_id,
                absence_date=f.feed_date,
                absence_reason=f.absence_reason,
                absence_reason_detail=f.absence_reason_detail,
                notify_parent=f.notify_parent,
                needs_makeup=f.needs_makeup,
                monthly_count=counts[f.student_id].count,
                alert=counts[f.student_id].alert,
            )
            for f in feeds
        ],
    )
