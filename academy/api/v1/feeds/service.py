"""
Feed save primitive, bulk save, day listing, previous progress, soft delete.

A save upserts the regular feed of a student on a date, or the makeup-session feed of a ticket.
"""

import hashlib
import json
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.api.v1.feed_config.service import load_feed_config
from academy.api.v1.makeup import service as makeup_service
from academy.core.config import settings
from academy.core.enums import AttendanceStatus, OperationMode, SessionType
from academy.core.exceptions import ConflictError, NotFoundError, PersistenceError, ServiceError
from academy.core.models import FeedOption, FeedValue, IdempotencyKey, MakeupTicket, StudentFeed
from academy.feed_input.schemas import FeedConfig, FeedDraft
from academy.feed_input.validation import find_progress_issue, find_validation_issue

from .schemas import (
    BulkSaveItemResult,
    BulkSaveResponse,
    FeedRecordResponse,
    FeedSavePayload,
    FeedSaveResponse,
    FeedValueOut,
    PreviousProgressResponse,
)

logger = logging.getLogger(__name__)

SAVE_REQUEST_PATH = "/api/v1/feeds/save"


def _feed_to_response(f: StudentFeed) -> FeedRecordResponse:
    return FeedRecordResponse(
        id=f.id,
        student_id=f.student_id,
        class_id=f.class_id,
        feed_date=f.feed_date,
        attendance_status=f.attendance_status,
        absence_reason=f.absence_reason,
        absence_reason_detail=f.absence_reason_detail,
        notify_parent=f.notify_parent,
        needs_makeup=f.needs_makeup,
        is_makeup=f.is_makeup,
        session_type=f.session_type,
        makeup_ticket_id=f.makeup_ticket_id,
        progress_text=f.progress_text,
        progress_entries=f.progress_entries or [],
        memo_values=f.memo_values or {},
        values=[FeedValueOut(set_id=v.set_id, option_id=v.option_id, score=v.score) for v in f.values],
        version=f.version,
        updated_at=f.updated_at,
    )


def draft_from_payload(payload: FeedSavePayload) -> FeedDraft:
    return FeedDraft(
        attendance_status=payload.attendance_status,
        absence_reason=payload.absence_reason,
        absence_reason_detail=payload.absence_reason_detail,
        notify_parent=payload.notify_parent,
        needs_makeup=payload.needs_makeup,
        is_makeup=payload.is_makeup,
        makeup_ticket_id=payload.makeup_ticket_id,
        progress_text=payload.progress_text,
        progress_entries=payload.progress_entries,
        feed_values={v.set_id: v.option_id for v in payload.feed_values},
        exam_scores={e.set_id: e.score for e in payload.exam_scores},
        memo_values=payload.memo_values,
    )


# ----- Idempotency -----
def request_hash(payload: FeedSavePayload) -> str:
    """Fingerprint of everything a save request carries except its key."""
    body = payload.model_dump(mode="json", exclude={"idempotency_key"})
    return hashlib.sha256(json.dumps(body, sort_keys=True).encode("utf-8")).hexdigest()


async def _find_replay(db: AsyncSession, tenant_id: UUID, payload: FeedSavePayload) -> Optional[FeedSaveResponse]:
    result = await db.execute(
        select(IdempotencyKey).where(
            IdempotencyKey.tenant_id == tenant_id,
            IdempotencyKey.key == payload.idempotency_key,
            IdempotencyKey.expires_at > datetime.utcnow(),
        )
    )
    row = result.scalar_one_or_none()
    if row is None or not row.response_body:
        return None
    if (
        row.student_id != payload.student_id
        or row.feed_date != payload.feed_date
        or (row.request_hash is not None and row.request_hash != request_hash(payload))
    ):
        logger.warning(
            "Idempotency key %s reused for a different request (student %s, %s)",
            payload.idempotency_key, payload.student_id, payload.feed_date,
        )
        raise ConflictError("Idempotency key was already used for a different request")
    return FeedSaveResponse.model_validate(row.response_body)


async def _remember(db: AsyncSession, tenant_id: UUID, payload: FeedSavePayload, response: FeedSaveResponse) -> None:
    # An expired row with the same key is replaced.
    result = await db.execute(
        select(IdempotencyKey).where(
            IdempotencyKey.tenant_id == tenant_id,
            IdempotencyKey.key == payload.idempotency_key,
        )
    )
    stale = result.scalar_one_or_none()
    if stale is not None:
        await db.delete(stale)
        await db.flush()
    db.add(
        IdempotencyKey(
            tenant_id=tenant_id,
            key=payload.idempotency_key,
            request_path=SAVE_REQUEST_PATH,
            student_id=payload.student_id,
            feed_date=payload.feed_date,
            request_hash=request_hash(payload),
            response_status=status.HTTP_201_CREATED,
            response_body=response.model_dump(mode="json"),
            expires_at=datetime.utcnow() + timedelta(hours=settings.idempotency_ttl_hours),
        )
    )


# ----- Validation against the taxonomy -----
async def _check_values(db: AsyncSession, draft: FeedDraft, config: FeedConfig) -> None:
    """Selections must name active select-sets and options of those sets; exam scores must name exam sets."""
    kinds = {s.id: s.kind for s in config.option_sets}
    for set_id in draft.feed_values:
        if kinds.get(set_id) != "select":
            raise ServiceError(f"Unknown option set: {set_id}", status.HTTP_400_BAD_REQUEST)
    for set_id in draft.exam_scores:
        if kinds.get(set_id) != "exam":
            raise ServiceError(f"Unknown exam set: {set_id}", status.HTTP_400_BAD_REQUEST)
    option_ids = [o for o in draft.feed_values.values() if o is not None]
    if not option_ids:
        return
    result = await db.execute(
        select(FeedOption.id, FeedOption.set_id).where(
            FeedOption.id.in_(option_ids),
            FeedOption.is_active.is_(True),
            FeedOption.deleted_at.is_(None),
        )
    )
    option_sets = {row[0]: row[1] for row in result.all()}
    for set_id, option_id in draft.feed_values.items():
        if option_id is not None and option_sets.get(option_id) != set_id:
            raise ServiceError(f"Option {option_id} does not belong to set {set_id}", status.HTTP_400_BAD_REQUEST)


def _resolve_needs_makeup(draft: FeedDraft, config: FeedConfig) -> bool:
    """Explicit per-record override first, then the tenant default for the absence reason."""
    if not draft.is_absent or draft.is_makeup:
        return False
    if draft.needs_makeup is not None:
        return draft.needs_makeup
    return config.default_needs_makeup(draft.absence_reason)


def _sync_values(feed: StudentFeed, draft: FeedDraft, merge: bool) -> None:
    """Bring feed.values in line with the draft. ``merge`` keeps stored sets the draft does not mention."""
    wanted = {}
    for set_id, option_id in draft.feed_values.items():
        if option_id is not None:
            wanted[set_id] = (option_id, None)
    for set_id, score in draft.exam_scores.items():
        if score is not None:
            wanted[set_id] = (None, score)

    current = {v.set_id: v for v in feed.values}
    for set_id, value in list(current.items()):
        if set_id in wanted:
            value.option_id, value.score = wanted.pop(set_id)
        elif not merge:
            feed.values.remove(value)
    for set_id, (option_id, score) in wanted.items():
        feed.values.append(FeedValue(set_id=set_id, option_id=option_id, score=score))


async def _find_existing(
    db: AsyncSession,
    tenant_id: UUID,
    payload: FeedSavePayload,
    draft: FeedDraft,
) -> Optional[StudentFeed]:
    """The row this save updates: the regular feed of that date, or the makeup feed of that ticket."""
    query = select(StudentFeed).where(StudentFeed.tenant_id == tenant_id)
    if draft.is_makeup:
        query = query.where(
            StudentFeed.session_type == SessionType.MAKEUP.value,
            StudentFeed.makeup_ticket_id == draft.makeup_ticket_id,
        )
    else:
        query = query.where(
            StudentFeed.session_type == SessionType.REGULAR.value,
            StudentFeed.student_id == payload.student_id,
            StudentFeed.feed_date == payload.feed_date,
        )
    result = await db.execute(query)
    feed = result.scalar_one_or_none()
    if feed is not None and feed.student_id != payload.student_id:
        raise ServiceError("Makeup ticket belongs to another student", status.HTTP_400_BAD_REQUEST)
    return feed


async def _write_feed(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    payload: FeedSavePayload,
    config: FeedConfig,
) -> Tuple[StudentFeed, Optional[MakeupTicket]]:
    """Upsert the feed and apply ticket side effects. Does not commit."""
    draft = draft_from_payload(payload)
    issue = find_validation_issue(draft, config) or find_progress_issue(draft, config)
    if issue is not None:
        raise issue.to_error()
    if draft.is_makeup and draft.makeup_ticket_id is None:
        raise ServiceError("makeup_ticket_id is required for a makeup session feed", status.HTTP_400_BAD_REQUEST)
    draft = draft.for_persistence()
    await _check_values(db, draft, config)

    feed = await _find_existing(db, tenant_id, payload, draft)
    live = feed is not None and feed.deleted_at is None
    if live and payload.expected_version is not None and feed.version != payload.expected_version:
        raise ConflictError(
            f"Feed was changed by someone else (version {feed.version}, expected {payload.expected_version})"
        )
    previously_needed = bool(
        live and feed.attendance_status == AttendanceStatus.ABSENT.value and feed.needs_makeup
    )
    # Team mode: each teacher submits the sets they own; keep the others.
    merge = bool(
        live
        and config.operation_mode == OperationMode.TEAM
        and not draft.is_absent
        and feed.attendance_status != AttendanceStatus.ABSENT.value
    )

    if feed is None:
        feed = StudentFeed(
            tenant_id=tenant_id,
            student_id=payload.student_id,
            feed_date=payload.feed_date,
            version=1,
            created_by=user_id,
        )
        db.add(feed)
    else:
        feed.version = (feed.version or 0) + 1 if live else 1
        feed.deleted_at = None
        feed.updated_at = datetime.utcnow()

    needs_makeup = _resolve_needs_makeup(draft, config)
    feed.feed_date = payload.feed_date
    feed.class_id = payload.class_id
    feed.attendance_status = draft.attendance_status.value
    feed.is_makeup = draft.is_makeup
    feed.session_type = SessionType.MAKEUP.value if draft.is_makeup else SessionType.REGULAR.value
    feed.is_counted_in_stats = not draft.is_makeup
    feed.makeup_ticket_id = draft.makeup_ticket_id if draft.is_makeup else None
    if draft.is_makeup:
        feed.absence_reason = None
        feed.absence_reason_detail = None
        feed.notify_parent = False
    else:
        feed.absence_reason = draft.absence_reason.value if draft.absence_reason else None
        feed.absence_reason_detail = draft.absence_reason_detail
        feed.notify_parent = draft.notify_parent
    feed.needs_makeup = needs_makeup
    feed.progress_text = draft.progress_text
    feed.progress_entries = [e.model_dump() for e in draft.progress_entries]
    feed.memo_values = draft.memo_values
    feed.last_idempotency_key = payload.idempotency_key
    feed.updated_by = user_id
    _sync_values(feed, draft, merge)
    await db.flush()

    if feed.notify_parent:
        logger.info("Parent notification requested for student %s on %s", feed.student_id, feed.feed_date)

    ticket: Optional[MakeupTicket] = None
    if not config.makeup_system_enabled:
        return feed, None
    if draft.is_makeup:
        if not draft.is_absent:
            ticket = await makeup_service.complete_from_makeup_feed(db, tenant_id, draft.makeup_ticket_id, feed, user_id)
    elif needs_makeup:
        ticket = await makeup_service.ensure_ticket_for_absence(db, tenant_id, feed, user_id, previously_needed)
    elif previously_needed:
        await makeup_service.release_tickets_for_absence(
            db,
            tenant_id,
            feed.student_id,
            feed.feed_date,
            user_id,
            makeup_service.RELEASED_REASON,
        )
    return feed, ticket


async def save_feed(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    payload: FeedSavePayload,
    config: Optional[FeedConfig] = None,
) -> FeedSaveResponse:
    """
    Save one feed atomically.

    A key already answered within the TTL returns the stored response without writing again,
    so a retried submission never creates a second feed or ticket.
    """
    replay = await _find_replay(db, tenant_id, payload)
    if replay is not None:
        logger.info("Idempotent replay of %s for student %s", payload.idempotency_key, payload.student_id)
        return replay
    if config is None:
        config = await load_feed_config(db, tenant_id)

    try:
        feed, ticket = await _write_feed(db, tenant_id, user_id, payload, config)
        response = FeedSaveResponse(
            success=True,
            feed_id=feed.id,
            version=feed.version,
            makeup_ticket_id=ticket.id if ticket is not None else None,
        )
        await _remember(db, tenant_id, payload, response)
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        # A concurrent submission with the same key may have won the race.
        replay = await _find_replay(db, tenant_id, payload)
        if replay is not None:
            return replay
        raise ConflictError("Feed was saved concurrently by another session; reload and retry")
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Feed save failed for student %s", payload.student_id)
        raise PersistenceError(f"Could not save feed: {e.__class__.__name__}") from e
    return response


async def save_feeds_bulk(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    payloads: List[FeedSavePayload],
) -> BulkSaveResponse:
    """Each payload in its own transaction; one failure never undoes another item."""
    config = await load_feed_config(db, tenant_id)
    results: List[BulkSaveItemResult] = []
    for p in payloads:
        try:
            r = await save_feed(db, tenant_id, user_id, p, config=config)
        except ServiceError as e:
            results.append(
                BulkSaveItemResult(
                    student_id=p.student_id,
                    idempotency_key=p.idempotency_key,
                    success=False,
                    error=e.message,
                    status_code=e.status_code,
                )
            )
            continue
        results.append(
            BulkSaveItemResult(
                student_id=p.student_id,
                idempotency_key=p.idempotency_key,
                success=True,
                feed_id=r.feed_id,
                version=r.version,
            )
        )
    total_saved = sum(1 for r in results if r.success)
    total_failed = len(results) - total_saved
    if total_failed:
        logger.warning("Bulk feed save: %d saved, %d failed", total_saved, total_failed)
    return BulkSaveResponse(
        success=total_failed == 0,
        results=results,
        total_saved=total_saved,
        total_failed=total_failed,
    )


async def get_day_feeds(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    feed_date: date,
    session_type: Optional[SessionType] = None,
) -> List[FeedRecordResponse]:
    """Live feeds of a class on a date, used to build the cards."""
    query = select(StudentFeed).where(
        StudentFeed.tenant_id == tenant_id,
        StudentFeed.class_id == class_id,
        StudentFeed.feed_date == feed_date,
        StudentFeed.deleted_at.is_(None),
    )
    if session_type is not None:
        query = query.where(StudentFeed.session_type == SessionType(session_type).value)
    result = await db.execute(query)
    return [_feed_to_response(f) for f in result.scalars().all()]


async def get_previous_progress(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: List[UUID],
    before: date,
) -> List[PreviousProgressResponse]:
    """Latest regular feed with progress before ``before``, per student. Students without one are left out."""
    if not student_ids:
        return []
    result = await db.execute(
        select(
            StudentFeed.student_id,
            StudentFeed.feed_date,
            StudentFeed.progress_text,
            StudentFeed.progress_entries,
        )
        .where(
            StudentFeed.tenant_id == tenant_id,
            StudentFeed.student_id.in_(student_ids),
            StudentFeed.feed_date < before,
            StudentFeed.session_type == SessionType.REGULAR.value,
            StudentFeed.deleted_at.is_(None),
        )
        .order_by(StudentFeed.feed_date.desc())
    )
    latest = {}
    for student_id, feed_date, progress_text, progress_entries in result.all():
        if student_id in latest:
            continue
        if not (progress_text or "").strip() and not progress_entries:
            continue
        latest[student_id] = PreviousProgressResponse(
            student_id=student_id,
            feed_date=feed_date,
            progress_text=progress_text,
            progress_entries=progress_entries or [],
        )
    return list(latest.values())


async def delete_feed(
    db: AsyncSession,
    tenant_id: UUID,
    user_id: Optional[UUID],
    feed_id: UUID,
) -> None:
    """Soft delete. Open makeup tickets of the absence are cancelled."""
    feed = await db.get(StudentFeed, feed_id)
    if not feed or feed.tenant_id != tenant_id or feed.deleted_at is not None:
        raise NotFoundError("Feed not found")
    feed.deleted_at = datetime.utcnow()
    feed.updated_by = user_id
    if feed.session_type == SessionType.REGULAR.value and feed.attendance_status == AttendanceStatus.ABSENT.value:
        await makeup_service.release_tickets_for_absence(
            db,
            tenant_id,
            feed.student_id,
            feed.feed_date,
            user_id,
            makeup_service.FEED_DELETED_REASON,
            include_scheduled=True,
        )
    await db.commit()
