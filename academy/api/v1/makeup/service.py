"""Makeup ticket lifecycle: created by absent feed saves; scheduled, completed, cancelled, reopened by staff."""

import logging
from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.enums import OPEN_TICKET_STATUSES, TICKET_TRANSITIONS, TicketAction, TicketStatus
from academy.core.exceptions import IllegalTransitionError, NotFoundError, ServiceError, ValidationError
from academy.core.models import MakeupTicket, MakeupTicketAuditLog, StudentFeed

from .schemas import (
    CancelTicketRequest,
    CompleteTicketRequest,
    MakeupTicketListResponse,
    MakeupTicketResponse,
    ScheduleTicketRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_NOTE = "Makeup completed"
RELEASED_REASON = "Makeup no longer needed"
FEED_DELETED_REASON = "Absence record deleted"

_OPEN = [s.value for s in OPEN_TICKET_STATUSES]


def _ticket_to_response(t: MakeupTicket) -> MakeupTicketResponse:
    return MakeupTicketResponse(
        id=t.id,
        student_id=t.student_id,
        class_id=t.class_id,
        feed_id=t.feed_id,
        absence_date=t.absence_date,
        absence_reason=t.absence_reason,
        status=t.status,
        scheduled_date=t.scheduled_date,
        scheduled_time=t.scheduled_time,
        completed_at=t.completed_at,
        completed_by=t.completed_by,
        completion_note=t.completion_note,
        makeup_date=t.makeup_date,
        makeup_class_id=t.makeup_class_id,
        cancellation_reason=t.cancellation_reason,
        cancelled_at=t.cancelled_at,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


def _log_ticket_audit(
    db: AsyncSession,
    ticket: MakeupTicket,
    action: str,
    from_status: Optional[str],
    performed_by: Optional[UUID],
    remarks: Optional[str] = None,
) -> None:
    db.add(
        MakeupTicketAuditLog(
            ticket_id=ticket.id,
            action=action,
            from_status=from_status,
            to_status=ticket.status,
            performed_by=performed_by,
            remarks=remarks,
        )
    )


def _apply_transition(ticket: MakeupTicket, action: TicketAction) -> str:
    """Move the ticket to the target state of ``action``. Returns the previous status."""
    sources, target = TICKET_TRANSITIONS[action]
    current = TicketStatus(ticket.status)
    if current not in sources:
        raise IllegalTransitionError(ticket.id, current.value, action.value)
    ticket.status = target.value
    ticket.updated_at = datetime.utcnow()
    return current.value


async def _get_ticket(db: AsyncSession, tenant_id: UUID, ticket_id: UUID) -> MakeupTicket:
    ticket = await db.get(MakeupTicket, ticket_id)
    if not ticket or ticket.tenant_id != tenant_id:
        raise NotFoundError("Makeup ticket not found")
    return ticket


async def _find_tickets_for_absence(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    absence_date: date,
) -> List[MakeupTicket]:
    result = await db.execute(
        select(MakeupTicket)
        .where(
            MakeupTicket.tenant_id == tenant_id,
            MakeupTicket.student_id == student_id,
            MakeupTicket.absence_date == absence_date,
        )
        .order_by(MakeupTicket.created_at.desc())
    )
    return list(result.scalars().all())


# ----- Side effects of feed saves (caller owns the transaction) -----
async def ensure_ticket_for_absence(
    db: AsyncSession,
    tenant_id: UUID,
    feed: StudentFeed,
    performed_by: Optional[UUID],
    previously_needed: bool,
) -> Optional[MakeupTicket]:
    """
    Called after an absent feed that needs a makeup is written.

    - an open ticket for the absence is kept (its reason follows the feed)
    - a completed ticket means the absence was already made up: nothing to do
    - only cancelled tickets (or none): a new pending ticket is created, unless this save
      merely re-submits an absence that already needed a makeup and whose ticket was cancelled
    """
    tickets = await _find_tickets_for_absence(db, tenant_id, feed.student_id, feed.feed_date)
    for t in tickets:
        if t.status in _OPEN:
            if t.absence_reason != feed.absence_reason:
                t.absence_reason = feed.absence_reason
                t.updated_at = datetime.utcnow()
            return t
    if any(t.status == TicketStatus.COMPLETED.value for t in tickets):
        return None
    if tickets and previously_needed:
        return None

    ticket = MakeupTicket(
        tenant_id=tenant_id,
        student_id=feed.student_id,
        class_id=feed.class_id,
        feed_id=feed.id,
        absence_date=feed.feed_date,
        absence_reason=feed.absence_reason,
        status=TicketStatus.PENDING.value,
    )
    db.add(ticket)
    await db.flush()
    _log_ticket_audit(db, ticket, "CREATED", None, performed_by)
    logger.info("Makeup ticket %s created for student %s absent on %s", ticket.id, feed.student_id, feed.feed_date)
    return ticket


async def release_tickets_for_absence(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    absence_date: date,
    performed_by: Optional[UUID],
    reason: str,
    include_scheduled: bool = False,
) -> List[MakeupTicket]:
    """Cancel the open ticket of an absence that no longer needs a makeup. Scheduled tickets are kept unless asked."""
    released = []
    for t in await _find_tickets_for_absence(db, tenant_id, student_id, absence_date):
        if t.status == TicketStatus.PENDING.value or (include_scheduled and t.status == TicketStatus.SCHEDULED.value):
            previous = _apply_transition(t, TicketAction.CANCEL)
            t.cancellation_reason = reason
            t.cancelled_at = datetime.utcnow()
            _log_ticket_audit(db, t, "CANCELLED", previous, performed_by, reason)
            released.append(t)
            logger.info("Makeup ticket %s cancelled: %s", t.id, reason)
        elif t.status == TicketStatus.SCHEDULED.value:
            logger.warning(
                "Makeup ticket %s is scheduled; left open although the absence no longer needs a makeup",
                t.id,
            )
    return released


async def complete_from_makeup_feed(
    db: AsyncSession,
    tenant_id: UUID,
    ticket_id: UUID,
    feed: StudentFeed,
    performed_by: Optional[UUID],
) -> MakeupTicket:
    """Completion triggered by saving the makeup session's own feed. Re-saving that feed is a no-op."""
    ticket = await _get_ticket(db, tenant_id, ticket_id)
    if ticket.student_id != feed.student_id:
        raise ServiceError("Makeup ticket belongs to another student", status.HTTP_400_BAD_REQUEST)
    if ticket.status == TicketStatus.COMPLETED.value and ticket.makeup_date == feed.feed_date:
        return ticket
    previous = _apply_transition(ticket, TicketAction.COMPLETE)
    ticket.completed_at = datetime.utcnow()
    ticket.completed_by = performed_by
    ticket.makeup_date = feed.feed_date
    ticket.makeup_class_id = feed.class_id
    if not ticket.completion_note:
        ticket.completion_note = DEFAULT_COMPLETION_NOTE
    _log_ticket_audit(db, ticket, "COMPLETED", previous, performed_by, "Makeup session feed saved")
    logger.info("Makeup ticket %s completed by makeup feed %s", ticket.id, feed.id)
    return ticket


# ----- Staff actions -----
async def get_ticket(db: AsyncSession, tenant_id: UUID, ticket_id: UUID) -> MakeupTicketResponse:
    return _ticket_to_response(await _get_ticket(db, tenant_id, ticket_id))


async def schedule_ticket(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    ticket_id: UUID,
    payload: ScheduleTicketRequest,
) -> MakeupTicketResponse:
    """pending -> scheduled, or reschedule while scheduled. A date is required, time is optional."""
    ticket = await _get_ticket(db, tenant_id, ticket_id)
    if payload.scheduled_date is None:
        raise ValidationError("scheduled_date is required to schedule a makeup", "scheduled_date_required")
    previous = _apply_transition(ticket, TicketAction.SCHEDULE)
    ticket.scheduled_date = payload.scheduled_date
    ticket.scheduled_time = payload.scheduled_time
    action = "RESCHEDULED" if previous == TicketStatus.SCHEDULED.value else "SCHEDULED"
    remarks = payload.scheduled_date.isoformat()
    if payload.scheduled_time:
        remarks = f"{remarks} {payload.scheduled_time.strftime('%H:%M')}"
    _log_ticket_audit(db, ticket, action, previous, user_id, remarks)
    await db.commit()
    await db.refresh(ticket)
    return _ticket_to_response(ticket)


async def complete_ticket(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    ticket_id: UUID,
    payload: CompleteTicketRequest,
) -> MakeupTicketResponse:
    ticket = await _get_ticket(db, tenant_id, ticket_id)
    previous = _apply_transition(ticket, TicketAction.COMPLETE)
    note = (payload.note or "").strip() or DEFAULT_COMPLETION_NOTE
    ticket.completed_at = datetime.utcnow()
    ticket.completed_by = user_id
    ticket.completion_note = note
    _log_ticket_audit(db, ticket, "COMPLETED", previous, user_id, note)
    await db.commit()
    await db.refresh(ticket)
    return _ticket_to_response(ticket)


async def cancel_ticket(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    ticket_id: UUID,
    payload: CancelTicketRequest,
) -> MakeupTicketResponse:
    """pending/scheduled -> cancelled. A non-blank reason is mandatory."""
    ticket = await _get_ticket(db, tenant_id, ticket_id)
    reason = (payload.reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to cancel a makeup", "cancellation_reason_required")
    previous = _apply_transition(ticket, TicketAction.CANCEL)
    ticket.cancellation_reason = reason
    ticket.cancelled_at = datetime.utcnow()
    _log_ticket_audit(db, ticket, "CANCELLED", previous, user_id, reason)
    await db.commit()
    await db.refresh(ticket)
    return _ticket_to_response(ticket)


async def reopen_ticket(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    ticket_id: UUID,
) -> MakeupTicketResponse:
    """completed -> pending. Undo for a completion made by mistake."""
    ticket = await _get_ticket(db, tenant_id, ticket_id)
    siblings = await _find_tickets_for_absence(db, tenant_id, ticket.student_id, ticket.absence_date)
    if any(t.id != ticket.id and t.status in _OPEN for t in siblings):
        raise IllegalTransitionError(
            ticket.id,
            ticket.status,
            TicketAction.REOPEN.value,
            "Another open makeup ticket already exists for this absence",
        )
    previous = _apply_transition(ticket, TicketAction.REOPEN)
    ticket.completed_at = None
    ticket.completed_by = None
    ticket.completion_note = None
    ticket.makeup_date = None
    ticket.makeup_class_id = None
    ticket.scheduled_date = None
    ticket.scheduled_time = None
    _log_ticket_audit(db, ticket, "REOPENED", previous, user_id)
    await db.commit()
    await db.refresh(ticket)
    return _ticket_to_response(ticket)


# ----- Listings -----
async def list_tickets(
    db: AsyncSession,
    tenant_id: UUID,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status_filter: Optional[str] = None,
    class_id: Optional[UUID] = None,
) -> MakeupTicketListResponse:
    """Tickets by absence date range and status ("all" or None for every status), newest absence first."""
    q = select(MakeupTicket).where(MakeupTicket.tenant_id == tenant_id)
    if start_date:
        q = q.where(MakeupTicket.absence_date >= start_date)
    if end_date:
        q = q.where(MakeupTicket.absence_date <= end_date)
    if status_filter and status_filter != "all":
        try:
            TicketStatus(status_filter)
        except ValueError:
            raise ServiceError(f"Invalid status: {status_filter}", status.HTTP_400_BAD_REQUEST)
        q = q.where(MakeupTicket.status == status_filter)
    if class_id:
        q = q.where(MakeupTicket.class_id == class_id)
    q = q.order_by(MakeupTicket.absence_date.desc(), MakeupTicket.created_at.desc())
    result = await db.execute(q)
    rows = result.scalars().all()
    counts = {s.value: 0 for s in TicketStatus}
    for t in rows:
        counts[t.status] = counts.get(t.status, 0) + 1
    return MakeupTicketListResponse(
        total_pending=counts[TicketStatus.PENDING.value],
        total_scheduled=counts[TicketStatus.SCHEDULED.value],
        total_completed=counts[TicketStatus.COMPLETED.value],
        total_cancelled=counts[TicketStatus.CANCELLED.value],
        tickets=[_ticket_to_response(t) for t in rows],
    )


async def list_open_tickets(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: Optional[UUID] = None,
) -> List[MakeupTicketResponse]:
    """Pending and scheduled tickets, oldest absence first (makeup session pickers)."""
    q = select(MakeupTicket).where(
        MakeupTicket.tenant_id == tenant_id,
        MakeupTicket.status.in_(_OPEN),
    )
    if student_id:
        q = q.where(MakeupTicket.student_id == student_id)
    result = await db.execute(q.order_by(MakeupTicket.absence_date, MakeupTicket.created_at))
    return [_ticket_to_response(t) for t in result.scalars().all()]
