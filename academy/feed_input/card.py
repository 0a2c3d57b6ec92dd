"""Per-student feed cards and the board holding all cards of one class on one date."""

import logging
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from academy.api.v1.feeds.schemas import (
    ExamScoreIn,
    FeedRecordResponse,
    FeedSavePayload,
    FeedValueIn,
    PreviousProgressResponse,
)
from academy.core.enums import AUTO_NOTIFY_REASONS, AbsenceReason, AttendanceStatus, CardStatus, SessionType

from .schemas import FeedConfig, FeedDraft, ProgressEntry
from .validation import ValidationIssue, compute_status, find_progress_issue, find_validation_issue

logger = logging.getLogger(__name__)

CardKey = Tuple[UUID, date]


def draft_from_record(record: FeedRecordResponse) -> FeedDraft:
    """Rebuild the editable draft of a persisted feed."""
    feed_values: Dict[UUID, Optional[UUID]] = {}
    exam_scores: Dict[UUID, Optional[float]] = {}
    for v in record.values:
        if v.option_id is not None:
            feed_values[v.set_id] = v.option_id
        elif v.score is not None:
            exam_scores[v.set_id] = v.score
    return FeedDraft(
        attendance_status=record.attendance_status,
        absence_reason=record.absence_reason,
        absence_reason_detail=record.absence_reason_detail,
        notify_parent=record.notify_parent,
        needs_makeup=record.needs_makeup if record.attendance_status == AttendanceStatus.ABSENT else None,
        is_makeup=record.is_makeup,
        makeup_ticket_id=record.makeup_ticket_id,
        progress_text=record.progress_text,
        progress_entries=record.progress_entries,
        feed_values=feed_values,
        exam_scores=exam_scores,
        memo_values=record.memo_values,
    )


class FeedCard:
    """
    Editable projection of one (student, date) feed.

    Status moves only on edits and on save outcomes:
    - loaded with a persisted record -> saved, otherwise empty
    - every edit recomputes the status from the draft, the snapshot and the tenant config
    - a save is attempted only from dirty
    """

    def __init__(
        self,
        student_id: UUID,
        class_id: UUID,
        feed_date: date,
        config: FeedConfig,
        snapshot: Optional[FeedDraft] = None,
        feed_id: Optional[UUID] = None,
        version: Optional[int] = None,
        student_name: Optional[str] = None,
        on_change: Optional[Callable[["FeedCard"], None]] = None,
        previous_progress: Optional[PreviousProgressResponse] = None,
    ) -> None:
        self.student_id = student_id
        self.class_id = class_id
        self.feed_date = feed_date
        self.student_name = student_name
        # Shown next to the progress field; never part of the draft.
        self.previous_progress = previous_progress
        self.config = config
        self.snapshot = snapshot
        self.draft = snapshot.model_copy(deep=True) if snapshot is not None else FeedDraft()
        self.status = CardStatus.SAVED if snapshot is not None else CardStatus.EMPTY
        self.feed_id = feed_id
        self.version = version
        self.in_flight = False
        self.last_idempotency_key: Optional[str] = None
        self.last_error: Optional[str] = None
        self.on_change = on_change
        self._unacked: Optional[Tuple[str, dict]] = None

    @property
    def key(self) -> CardKey:
        return (self.student_id, self.feed_date)

    @property
    def is_dirty(self) -> bool:
        return self.status == CardStatus.DIRTY

    def validation_issue(self) -> Optional[ValidationIssue]:
        return find_validation_issue(self.draft, self.config)

    def progress_issue(self) -> Optional[ValidationIssue]:
        return find_progress_issue(self.draft, self.config)

    def _recompute(self) -> CardStatus:
        self.status = compute_status(self.draft, self.config, self.snapshot)
        self._notify()
        return self.status

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    # ----- edits -----
    def edit(self, **changes) -> CardStatus:
        """Apply raw field changes to the draft and recompute the status."""
        data = self.draft.model_dump()
        data.update(changes)
        self.draft = FeedDraft.model_validate(data)
        return self._recompute()

    def set_attendance(
        self,
        attendance_status: AttendanceStatus,
        reason: Optional[AbsenceReason] = None,
        detail: Optional[str] = None,
    ) -> CardStatus:
        absent = AttendanceStatus(attendance_status) == AttendanceStatus.ABSENT
        reason = AbsenceReason(reason) if (absent and reason is not None) else None
        return self.edit(
            attendance_status=attendance_status,
            absence_reason=reason,
            absence_reason_detail=detail if reason == AbsenceReason.OTHER else None,
            notify_parent=reason in AUTO_NOTIFY_REASONS,
            needs_makeup=self.config.default_needs_makeup(reason) if absent else None,
        )

    def set_needs_makeup(self, needs_makeup: bool) -> CardStatus:
        return self.edit(needs_makeup=needs_makeup)

    def set_notify_parent(self, notify: bool) -> CardStatus:
        return self.edit(notify_parent=notify)

    def select_option(self, set_id: UUID, option_id: Optional[UUID]) -> CardStatus:
        values = dict(self.draft.feed_values)
        values[set_id] = option_id
        return self.edit(feed_values=values)

    def set_exam_score(self, set_id: UUID, score: Optional[float]) -> CardStatus:
        scores = dict(self.draft.exam_scores)
        scores[set_id] = score
        return self.edit(exam_scores=scores)

    def set_memo(self, key: str, text: str) -> CardStatus:
        memos = dict(self.draft.memo_values)
        memos[key] = text
        return self.edit(memo_values=memos)

    def set_progress(
        self,
        text: Optional[str] = None,
        entries: Optional[List[ProgressEntry]] = None,
    ) -> CardStatus:
        changes = {"progress_text": text}
        if entries is not None:
            changes["progress_entries"] = [e.model_dump() for e in entries]
        return self.edit(**changes)

    def attach_makeup_ticket(self, ticket_id: Optional[UUID]) -> CardStatus:
        """Mark this card as the feed of a makeup session for the given ticket (None detaches)."""
        return self.edit(is_makeup=ticket_id is not None, makeup_ticket_id=ticket_id)

    def restore_draft(self, draft: FeedDraft) -> CardStatus:
        """Adopt a draft recovered from the local cache."""
        self.draft = draft.model_copy(deep=True)
        return self._recompute()

    def reset(self) -> CardStatus:
        """Discard unsaved edits."""
        self.draft = self.snapshot.model_copy(deep=True) if self.snapshot is not None else FeedDraft()
        self.status = CardStatus.SAVED if self.snapshot is not None else CardStatus.EMPTY
        self.last_error = None
        self._unacked = None
        self._notify()
        return self.status

    # ----- save outcomes -----
    def build_payload(self, idempotency_key: str) -> FeedSavePayload:
        d = self.draft.for_persistence()
        return FeedSavePayload(
            student_id=self.student_id,
            class_id=self.class_id,
            feed_date=self.feed_date,
            attendance_status=d.attendance_status,
            absence_reason=d.absence_reason,
            absence_reason_detail=d.absence_reason_detail,
            notify_parent=d.notify_parent,
            needs_makeup=d.needs_makeup,
            is_makeup=d.is_makeup,
            makeup_ticket_id=d.makeup_ticket_id,
            progress_text=d.progress_text,
            progress_entries=d.progress_entries,
            feed_values=[
                FeedValueIn(set_id=set_id, option_id=option_id)
                for set_id, option_id in d.feed_values.items()
                if option_id is not None
            ],
            exam_scores=[
                ExamScoreIn(set_id=set_id, score=score)
                for set_id, score in d.exam_scores.items()
                if score is not None
            ],
            memo_values={k: v for k, v in d.memo_values.items() if v},
            idempotency_key=idempotency_key,
            expected_version=self.version,
        )

    def retry_key(self) -> Optional[str]:
        """Key of the last unacknowledged submission if the draft has not changed since; a retry reuses it."""
        if self._unacked is None:
            return None
        key, submitted = self._unacked
        return key if submitted == self.draft.comparable() else None

    def begin_save(self, idempotency_key: str) -> FeedDraft:
        """Mark in flight and return the draft being submitted."""
        self.in_flight = True
        self.last_idempotency_key = idempotency_key
        self._unacked = (idempotency_key, self.draft.comparable())
        return self.draft.model_copy(deep=True)

    def mark_saved(self, submitted: FeedDraft, feed_id: Optional[UUID], version: Optional[int]) -> CardStatus:
        self.in_flight = False
        self._unacked = None
        self.last_error = None
        self.feed_id = feed_id or self.feed_id
        self.version = version if version is not None else self.version
        persisted = submitted.for_persistence()
        edited_meanwhile = self.draft.comparable() != submitted.comparable()
        self.snapshot = persisted
        if not edited_meanwhile:
            self.draft = persisted.model_copy(deep=True)
        return self._recompute()

    def mark_failed(self, error: str) -> CardStatus:
        self.in_flight = False
        self.last_error = error
        return self._recompute()


class CardBoard:
    """All cards of one class on one date. Owned and passed around by the caller; nothing global."""

    def __init__(
        self,
        class_id: UUID,
        feed_date: date,
        config: FeedConfig,
        on_change: Optional[Callable[[FeedCard], None]] = None,
    ) -> None:
        self.class_id = class_id
        self.feed_date = feed_date
        self.config = config
        self.on_change = on_change
        self.cards: Dict[UUID, FeedCard] = {}

    def load(
        self,
        students: Iterable[Tuple[UUID, Optional[str]]],
        records: Iterable[FeedRecordResponse] = (),
        previous_progress: Iterable[PreviousProgressResponse] = (),
    ) -> None:
        """
        Create one card per student; students with a persisted regular feed start saved.

        Makeup-session records of the same date are not part of the board. Previous progress is
        attached to each card as a reference.
        """
        by_student = {r.student_id: r for r in records if r.session_type == SessionType.REGULAR.value}
        previous = {p.student_id: p for p in previous_progress}
        for student_id, name in students:
            record = by_student.get(student_id)
            self.cards[student_id] = FeedCard(
                student_id=student_id,
                class_id=self.class_id,
                feed_date=self.feed_date,
                config=self.config,
                snapshot=draft_from_record(record) if record else None,
                feed_id=record.id if record else None,
                version=record.version if record else None,
                student_name=name,
                on_change=self.on_change,
                previous_progress=previous.get(student_id),
            )

    def __getitem__(self, student_id: UUID) -> FeedCard:
        return self.cards[student_id]

    def __iter__(self):
        return iter(self.cards.values())

    def __len__(self) -> int:
        return len(self.cards)

    def dirty_cards(self) -> List[FeedCard]:
        return [c for c in self.cards.values() if c.status == CardStatus.DIRTY]

    def error_cards(self) -> List[FeedCard]:
        return [c for c in self.cards.values() if c.status == CardStatus.ERROR]

    def missing_progress_cards(self) -> List[FeedCard]:
        return [c for c in self.cards.values() if c.status == CardStatus.DIRTY and c.progress_issue() is not None]

    @property
    def has_unsaved(self) -> bool:
        return any(c.status in (CardStatus.DIRTY, CardStatus.ERROR) for c in self.cards.values())

    def apply_progress_to_all(self, source_student_id: UUID, entries: List[ProgressEntry]) -> int:
        """Copy progress entries to every other present/late card. Returns the number of cards changed."""
        if not entries:
            return 0
        changed = 0
        for card in self.cards.values():
            if card.student_id == source_student_id or card.draft.is_absent:
                continue
            card.set_progress(card.draft.progress_text, entries)
            changed += 1
        logger.debug("Applied progress from %s to %d cards", source_student_id, changed)
        return changed
