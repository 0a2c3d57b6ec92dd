"""Card status computation. Pure: the same draft, snapshot and config always give the same status."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from academy.core.enums import AbsenceReason, CardStatus
from academy.core.exceptions import ValidationError

from .schemas import FeedConfig, FeedDraft

RULE_ABSENCE_REASON = "absence_reason_required"
RULE_ABSENCE_DETAIL = "absence_detail_required"
RULE_REQUIRED_SET = "required_option_missing"
RULE_SCORE_STEP = "score_step_mismatch"
RULE_PROGRESS_REQUIRED = "progress_required"

SCORE_STEP_TOLERANCE = 1e-6


class ValidationIssue(BaseModel):
    rule: str
    message: str
    set_id: Optional[UUID] = None

    def to_error(self) -> ValidationError:
        return ValidationError(self.message, self.rule, self.set_id)


def find_validation_issue(draft: FeedDraft, config: FeedConfig) -> Optional[ValidationIssue]:
    """First failing rule that puts the card in error, or None."""
    if draft.is_absent:
        if draft.absence_reason is None:
            return ValidationIssue(rule=RULE_ABSENCE_REASON, message="Absence reason is required")
        if draft.absence_reason == AbsenceReason.OTHER and not (draft.absence_reason_detail or "").strip():
            return ValidationIssue(
                rule=RULE_ABSENCE_DETAIL,
                message="Describe the absence reason when 'other' is selected",
            )
        return None

    for option_set in config.required_sets():
        if draft.feed_values.get(option_set.id) is None:
            return ValidationIssue(
                rule=RULE_REQUIRED_SET,
                message=f"'{option_set.name}' is required",
                set_id=option_set.id,
            )

    steps = {s.id: s for s in config.option_sets if s.kind == "exam" and s.score_step}
    for set_id, score in draft.exam_scores.items():
        option_set = steps.get(set_id)
        if option_set is None or score is None:
            continue
        units = score / option_set.score_step
        if abs(units - round(units)) > SCORE_STEP_TOLERANCE:
            return ValidationIssue(
                rule=RULE_SCORE_STEP,
                message=f"'{option_set.name}' scores go in steps of {option_set.score_step:g}",
                set_id=set_id,
            )
    return None


def find_progress_issue(draft: FeedDraft, config: FeedConfig) -> Optional[ValidationIssue]:
    """
    Save-time progress check, separate from the card status.

    When the tenant tracks progress, a regular present or late feed needs at least one progress
    entry and every entry needs an end page.
    """
    if not config.requires_progress(draft):
        return None
    if not draft.progress_entries:
        return ValidationIssue(rule=RULE_PROGRESS_REQUIRED, message="Enter today's progress")
    for entry in draft.progress_entries:
        if not (entry.end_page or "").strip():
            return ValidationIssue(
                rule=RULE_PROGRESS_REQUIRED,
                message=f"Enter the end page for '{entry.textbook}'",
            )
    return None


def compute_status(
    draft: FeedDraft,
    config: FeedConfig,
    snapshot: Optional[FeedDraft] = None,
) -> CardStatus:
    """Status of a draft against its last persisted snapshot (None if never saved)."""
    if find_validation_issue(draft, config) is not None:
        return CardStatus.ERROR
    current = draft.comparable()
    if snapshot is not None:
        if current == snapshot.comparable():
            return CardStatus.SAVED
        return CardStatus.DIRTY
    if current != FeedDraft().comparable():
        return CardStatus.DIRTY
    return CardStatus.EMPTY
