"""Draft and configuration types shared by the teacher-session engine and the save service."""

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from academy.core.enums import AbsenceReason, AttendanceStatus, OperationMode


class ProgressEntry(BaseModel):
    """Progress for one textbook."""

    textbook: str
    end_page: Optional[str] = None


class OptionSetRule(BaseModel):
    """The slice of an option set that validation needs."""

    id: UUID
    name: str
    kind: str = "select"
    score_step: Optional[float] = None  # exam sets: scores must be multiples of this
    is_required: bool = True
    operation_modes: Optional[List[OperationMode]] = None  # None: used in every mode

    def applies_to(self, mode: OperationMode) -> bool:
        return self.operation_modes is None or mode in self.operation_modes


class FeedConfig(BaseModel):
    """Tenant configuration governing validation and makeup defaults."""

    operation_mode: OperationMode = OperationMode.HOMEROOM
    option_sets: List[OptionSetRule] = Field(default_factory=list)
    makeup_defaults: Dict[str, bool] = Field(default_factory=dict)
    makeup_system_enabled: bool = True
    progress_enabled: bool = False

    def required_sets(self) -> List[OptionSetRule]:
        # Team mode lets each teacher submit a partial subset of the feed.
        if self.operation_mode == OperationMode.TEAM:
            return []
        return [
            s for s in self.option_sets
            if s.kind == "select" and s.is_required and s.applies_to(self.operation_mode)
        ]

    def requires_progress(self, draft: "FeedDraft") -> bool:
        """Regular present/late feeds need progress when the tenant tracks it; team mode submits partial feeds."""
        return (
            self.progress_enabled
            and self.operation_mode != OperationMode.TEAM
            and not draft.is_absent
            and not draft.is_makeup
        )

    def default_needs_makeup(self, reason: Optional[AbsenceReason]) -> bool:
        if reason is None:
            return False
        return self.makeup_defaults.get(AbsenceReason(reason).value, True)


class FeedDraft(BaseModel):
    """Editable field values of one student's feed for one date."""

    attendance_status: AttendanceStatus = AttendanceStatus.PRESENT
    absence_reason: Optional[AbsenceReason] = None
    absence_reason_detail: Optional[str] = None
    notify_parent: bool = False
    needs_makeup: Optional[bool] = None
    is_makeup: bool = False
    makeup_ticket_id: Optional[UUID] = None

    progress_text: Optional[str] = None
    progress_entries: List[ProgressEntry] = Field(default_factory=list)
    feed_values: Dict[UUID, Optional[UUID]] = Field(default_factory=dict)  # set_id -> option_id
    exam_scores: Dict[UUID, Optional[float]] = Field(default_factory=dict)  # set_id -> score
    memo_values: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_absent(self) -> bool:
        return self.attendance_status == AttendanceStatus.ABSENT

    def comparable(self) -> Dict[str, Any]:
        """Canonical form: unset selections, blank memos and blank text compare equal to missing."""
        data = self.model_dump(mode="json")
        data["feed_values"] = {k: v for k, v in data["feed_values"].items() if v is not None}
        data["exam_scores"] = {k: v for k, v in data["exam_scores"].items() if v is not None}
        data["memo_values"] = {k: v for k, v in data["memo_values"].items() if v and v.strip()}
        for key in ("absence_reason_detail", "progress_text"):
            if data[key] is not None and not data[key].strip():
                data[key] = None
        return data

    def for_persistence(self) -> "FeedDraft":
        """Copy with the fields that must not be stored for the attendance status removed."""
        if self.is_absent:
            return self.model_copy(
                update={
                    "feed_values": {},
                    "exam_scores": {},
                    "progress_text": None,
                    "progress_entries": [],
                }
            )
        return self.model_copy(
            update={
                "absence_reason": None,
                "absence_reason_detail": None,
                "needs_makeup": None,
            }
        )
