from academy.core.enums import AbsenceReason, AttendanceStatus, CardStatus, OperationMode
from academy.feed_input.schemas import FeedConfig, FeedDraft, OptionSetRule, ProgressEntry
from academy.feed_input.validation import (
    RULE_ABSENCE_DETAIL,
    RULE_ABSENCE_REASON,
    RULE_PROGRESS_REQUIRED,
    RULE_REQUIRED_SET,
    RULE_SCORE_STEP,
    compute_status,
    find_progress_issue,
    find_validation_issue,
)


def _complete(ids, **extra) -> FeedDraft:
    values = {ids.homework: ids.homework_done, ids.attitude: ids.attitude_good}
    return FeedDraft(feed_values=values, **extra)


def test_default_draft_without_snapshot_is_empty(feed_config) -> None:
    assert compute_status(FeedDraft(), FeedConfig()) == CardStatus.EMPTY


def test_absent_requires_reason(feed_config) -> None:
    draft = FeedDraft(attendance_status=AttendanceStatus.ABSENT)
    issue = find_validation_issue(draft, feed_config)
    assert issue is not None
    assert issue.rule == RULE_ABSENCE_REASON
    assert compute_status(draft, feed_config) == CardStatus.ERROR


def test_other_reason_requires_detail(feed_config) -> None:
    draft = FeedDraft(
        attendance_status=AttendanceStatus.ABSENT,
        absence_reason=AbsenceReason.OTHER,
        absence_reason_detail="   ",
    )
    assert find_validation_issue(draft, feed_config).rule == RULE_ABSENCE_DETAIL

    draft = draft.model_copy(update={"absence_reason_detail": "Dentist"})
    assert find_validation_issue(draft, feed_config) is None


def test_absent_ignores_required_option_sets(feed_config) -> None:
    draft = FeedDraft(attendance_status=AttendanceStatus.ABSENT, absence_reason=AbsenceReason.SICK)
    assert find_validation_issue(draft, feed_config) is None
    assert compute_status(draft, feed_config) == CardStatus.DIRTY


def test_present_reports_first_missing_required_set(feed_config, ids) -> None:
    draft = FeedDraft(feed_values={ids.homework: ids.homework_done})
    issue = find_validation_issue(draft, feed_config)
    assert issue.rule == RULE_REQUIRED_SET
    assert issue.set_id == ids.attitude

    error = issue.to_error()
    assert error.status_code == 422
    assert error.rule == RULE_REQUIRED_SET


def test_optional_exam_set_is_not_required(feed_config, ids) -> None:
    assert find_validation_issue(_complete(ids), feed_config) is None


def test_team_mode_accepts_partial_feed(feed_config, ids) -> None:
    team = feed_config.model_copy(update={"operation_mode": OperationMode.TEAM})
    draft = FeedDraft(feed_values={ids.homework: ids.homework_done})
    assert find_validation_issue(draft, team) is None


def test_set_limited_to_other_mode_is_not_required(ids) -> None:
    config = FeedConfig(
        option_sets=[OptionSetRule(id=ids.homework, name="Homework", operation_modes=[OperationMode.TEAM])],
    )
    assert find_validation_issue(FeedDraft(), config) is None


def test_saved_and_dirty_against_snapshot(feed_config, ids) -> None:
    snapshot = _complete(ids)
    assert compute_status(_complete(ids), feed_config, snapshot) == CardStatus.SAVED

    changed = _complete(ids, memo_values={"default": "Great focus today"})
    assert compute_status(changed, feed_config, snapshot) == CardStatus.DIRTY


def test_blank_text_compares_equal_to_missing(feed_config, ids) -> None:
    snapshot = _complete(ids)
    blank = _complete(ids, progress_text="  ", memo_values={"default": ""})
    assert compute_status(blank, feed_config, snapshot) == CardStatus.SAVED


def test_status_is_deterministic(feed_config, ids) -> None:
    draft = FeedDraft(feed_values={ids.homework: ids.homework_done})
    assert {compute_status(draft, feed_config) for _ in range(5)} == {CardStatus.ERROR}


def test_for_persistence_keeps_absence_records_pure(ids) -> None:
    draft = _complete(
        ids,
        attendance_status=AttendanceStatus.ABSENT,
        absence_reason=AbsenceReason.SICK,
        exam_scores={ids.exam: 85.0},
        progress_text="Unit 3",
    )
    stored = draft.for_persistence()
    assert stored.feed_values == {}
    assert stored.exam_scores == {}
    assert stored.progress_text is None
    assert stored.absence_reason == AbsenceReason.SICK


def test_for_persistence_drops_absence_fields_when_present(ids) -> None:
    draft = _complete(ids, absence_reason=AbsenceReason.SICK, needs_makeup=True)
    stored = draft.for_persistence()
    assert stored.absence_reason is None
    assert stored.needs_makeup is None
    assert stored.feed_values == draft.feed_values


def test_default_needs_makeup_follows_tenant_defaults(feed_config) -> None:
    assert feed_config.default_needs_makeup(AbsenceReason.SICK) is True
    assert feed_config.default_needs_makeup(AbsenceReason.UNEXCUSED) is False
    # Reasons the tenant never configured need a makeup.
    assert feed_config.default_needs_makeup(AbsenceReason.FAMILY) is True
    assert feed_config.default_needs_makeup(None) is False


def test_exam_score_must_follow_score_step(feed_config, ids) -> None:
    assert find_validation_issue(_complete(ids, exam_scores={ids.exam: 92.5}), feed_config) is None

    draft = _complete(ids, exam_scores={ids.exam: 92.3})
    issue = find_validation_issue(draft, feed_config)
    assert issue.rule == RULE_SCORE_STEP
    assert issue.set_id == ids.exam
    assert compute_status(draft, feed_config) == CardStatus.ERROR


def test_exam_set_without_step_takes_any_score(ids) -> None:
    config = FeedConfig(option_sets=[OptionSetRule(id=ids.exam, name="Quiz", kind="exam", is_required=False)])
    assert find_validation_issue(FeedDraft(exam_scores={ids.exam: 7.3}), config) is None


def test_progress_needs_an_entry_with_end_page(feed_config, ids) -> None:
    config = feed_config.model_copy(update={"progress_enabled": True})

    assert find_progress_issue(_complete(ids), config).rule == RULE_PROGRESS_REQUIRED
    blank_page = _complete(ids, progress_entries=[ProgressEntry(textbook="Grammar 1", end_page=" ")])
    assert find_progress_issue(blank_page, config).rule == RULE_PROGRESS_REQUIRED
    done = _complete(ids, progress_entries=[ProgressEntry(textbook="Grammar 1", end_page="42")])
    assert find_progress_issue(done, config) is None

    # Progress is a save-time check; the card itself is still dirty, not in error.
    assert compute_status(_complete(ids), config) == CardStatus.DIRTY


def test_progress_not_required_for_absent_makeup_or_team(feed_config, ids) -> None:
    config = feed_config.model_copy(update={"progress_enabled": True})
    absent = FeedDraft(attendance_status=AttendanceStatus.ABSENT, absence_reason=AbsenceReason.SICK)
    assert find_progress_issue(absent, config) is None
    assert find_progress_issue(_complete(ids, is_makeup=True), config) is None

    team = config.model_copy(update={"operation_mode": OperationMode.TEAM})
    assert find_progress_issue(_complete(ids), team) is None
    assert find_progress_issue(_complete(ids), feed_config) is None
