import uuid
from datetime import date
from typing import List

import pytest

from academy.api.v1.feeds.schemas import BulkSaveItemResult, BulkSaveResponse, FeedSavePayload, FeedSaveResponse
from academy.core.enums import AbsenceReason, AttendanceStatus, CardStatus
from academy.core.exceptions import PersistenceError, ValidationError
from academy.feed_input.card import CardBoard
from academy.feed_input.coordinator import PersistenceCoordinator
from academy.feed_input.schemas import ProgressEntry
from academy.feed_input.stores import FeedStore


FEED_DATE = date(2025, 1, 5)


class FakeStore(FeedStore):
    """Records submissions; students in ``failing`` get a transient failure."""

    def __init__(self) -> None:
        self.saved: List[FeedSavePayload] = []
        self.bulk_calls: List[List[FeedSavePayload]] = []
        self.failing = set()
        self.unreachable = False

    async def save(self, payload: FeedSavePayload) -> FeedSaveResponse:
        if self.unreachable or payload.student_id in self.failing:
            raise PersistenceError("Store unavailable")
        self.saved.append(payload)
        return FeedSaveResponse(success=True, feed_id=uuid.uuid4(), version=1)

    async def save_bulk(self, payloads: List[FeedSavePayload]) -> BulkSaveResponse:
        self.bulk_calls.append(list(payloads))
        if self.unreachable:
            raise PersistenceError("Store unavailable")
        results = []
        for p in payloads:
            if p.student_id in self.failing:
                results.append(
                    BulkSaveItemResult(
                        student_id=p.student_id,
                        idempotency_key=p.idempotency_key,
                        success=False,
                        error="Store unavailable",
                        status_code=503,
                    )
                )
            else:
                self.saved.append(p)
                results.append(
                    BulkSaveItemResult(
                        student_id=p.student_id,
                        idempotency_key=p.idempotency_key,
                        success=True,
                        feed_id=uuid.uuid4(),
                        version=1,
                    )
                )
        saved = sum(1 for r in results if r.success)
        return BulkSaveResponse(
            success=saved == len(results),
            results=results,
            total_saved=saved,
            total_failed=len(results) - saved,
        )


def _board(feed_config, ids, count: int) -> CardBoard:
    board = CardBoard(ids.class_id, FEED_DATE, feed_config)
    board.load([(uuid.uuid4(), f"Student {i}") for i in range(count)])
    for card in board:
        card.select_option(ids.homework, ids.homework_done)
        card.select_option(ids.attitude, ids.attitude_good)
    return board


@pytest.mark.asyncio
async def test_save_dirty_card(feed_config, ids) -> None:
    store = FakeStore()
    card = next(iter(_board(feed_config, ids, 1)))
    outcome = await PersistenceCoordinator(store).save(card)

    assert outcome.success and not outcome.skipped
    assert card.status == CardStatus.SAVED
    assert card.version == 1
    assert store.saved[0].idempotency_key == outcome.idempotency_key


@pytest.mark.asyncio
async def test_save_error_card_is_rejected_locally(feed_config, ids) -> None:
    store = FakeStore()
    board = CardBoard(ids.class_id, FEED_DATE, feed_config)
    board.load([(ids.student_a, None)])
    card = board[ids.student_a]
    card.set_attendance(AttendanceStatus.ABSENT, AbsenceReason.OTHER)

    with pytest.raises(ValidationError) as exc:
        await PersistenceCoordinator(store).save(card)
    assert exc.value.rule == "absence_detail_required"
    assert store.saved == []


@pytest.mark.asyncio
async def test_save_empty_or_saved_card_is_noop(feed_config, ids) -> None:
    store = FakeStore()
    coordinator = PersistenceCoordinator(store)
    board = CardBoard(ids.class_id, FEED_DATE, feed_config)
    board.load([(ids.student_a, None)])

    outcome = await coordinator.save(board[ids.student_a])
    assert outcome.skipped
    assert store.saved == []


@pytest.mark.asyncio
async def test_failed_save_keeps_card_dirty_and_retry_reuses_key(feed_config, ids) -> None:
    store = FakeStore()
    store.unreachable = True
    coordinator = PersistenceCoordinator(store)
    card = next(iter(_board(feed_config, ids, 1)))

    with pytest.raises(PersistenceError):
        await coordinator.save(card)
    assert card.status == CardStatus.DIRTY
    assert card.in_flight is False
    first_key = card.last_idempotency_key

    store.unreachable = False
    outcome = await coordinator.save(card)
    assert outcome.idempotency_key == first_key
    assert card.status == CardStatus.SAVED


@pytest.mark.asyncio
async def test_bulk_save_partial_failure_then_resubmits_only_remaining(feed_config, ids) -> None:
    store = FakeStore()
    coordinator = PersistenceCoordinator(store)
    board = _board(feed_config, ids, 5)
    failing = list(board)[2]
    store.failing.add(failing.student_id)

    result = await coordinator.save_all(board)
    assert (result.total_saved, result.total_failed) == (4, 1)
    assert result.is_partial
    assert result.failed_student_ids() == [failing.student_id]
    assert [c.status for c in board].count(CardStatus.SAVED) == 4
    assert failing.status == CardStatus.DIRTY
    first_key = failing.last_idempotency_key

    store.failing.clear()
    again = await coordinator.save_all(board)
    assert len(store.bulk_calls[-1]) == 1
    assert store.bulk_calls[-1][0].student_id == failing.student_id
    assert store.bulk_calls[-1][0].idempotency_key == first_key
    assert (again.total_saved, again.total_failed) == (1, 0)
    assert not board.has_unsaved


@pytest.mark.asyncio
async def test_bulk_save_skips_error_cards(feed_config, ids) -> None:
    store = FakeStore()
    board = _board(feed_config, ids, 3)
    broken = list(board)[0]
    broken.select_option(ids.attitude, None)

    result = await PersistenceCoordinator(store).save_all(board)
    assert result.invalid_count == 1
    assert result.total_saved == 2
    assert broken.student_id not in {p.student_id for p in store.saved}
    assert broken.status == CardStatus.ERROR


@pytest.mark.asyncio
async def test_bulk_save_undelivered_marks_every_card_failed(feed_config, ids) -> None:
    store = FakeStore()
    store.unreachable = True
    board = _board(feed_config, ids, 2)

    result = await PersistenceCoordinator(store).save_all(board)
    assert result.total_failed == 2
    assert all(c.status == CardStatus.DIRTY for c in board)
    assert all(c.last_error == "Store unavailable" for c in board)


@pytest.mark.asyncio
async def test_toggle_flag_rolls_back_on_failure(feed_config, ids) -> None:
    store = FakeStore()
    coordinator = PersistenceCoordinator(store)
    board = CardBoard(ids.class_id, FEED_DATE, feed_config)
    board.load([(ids.student_a, None)])
    card = board[ids.student_a]
    card.set_attendance(AttendanceStatus.ABSENT, AbsenceReason.SICK)
    await coordinator.save(card)
    assert card.draft.notify_parent is False

    store.unreachable = True
    with pytest.raises(PersistenceError):
        await coordinator.toggle_flag(card, "notify_parent", True)
    assert card.draft.notify_parent is False
    assert card.status == CardStatus.SAVED

    store.unreachable = False
    await coordinator.toggle_flag(card, "notify_parent", True)
    assert card.draft.notify_parent is True
    assert card.status == CardStatus.SAVED
    assert store.saved[-1].notify_parent is True


class BrokenStore(FakeStore):
    """Fails with a non-service error, like an unreadable response body."""

    async def save(self, payload: FeedSavePayload) -> FeedSaveResponse:
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    async def save_bulk(self, payloads: List[FeedSavePayload]) -> BulkSaveResponse:
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


@pytest.mark.asyncio
async def test_unexpected_store_error_leaves_card_retryable(feed_config, ids) -> None:
    card = next(iter(_board(feed_config, ids, 1)))

    with pytest.raises(PersistenceError):
        await PersistenceCoordinator(BrokenStore()).save(card)
    assert card.status == CardStatus.DIRTY
    assert card.in_flight is False
    assert card.last_error == "Save failed: ValueError"

    store = FakeStore()
    outcome = await PersistenceCoordinator(store).save(card)
    assert outcome.success and not outcome.skipped
    assert card.status == CardStatus.SAVED
    assert len(store.saved) == 1


@pytest.mark.asyncio
async def test_unexpected_bulk_error_fails_every_card(feed_config, ids) -> None:
    board = _board(feed_config, ids, 2)

    result = await PersistenceCoordinator(BrokenStore()).save_all(board)
    assert (result.total_saved, result.total_failed) == (0, 2)
    assert all(c.status == CardStatus.DIRTY and not c.in_flight for c in board)

    result = await PersistenceCoordinator(FakeStore()).save_all(board)
    assert (result.total_saved, result.total_failed) == (2, 0)


@pytest.mark.asyncio
async def test_cards_missing_progress_are_held_back(feed_config, ids) -> None:
    config = feed_config.model_copy(update={"progress_enabled": True})
    board = _board(config, ids, 2)
    ready, missing = list(board)
    ready.set_progress(entries=[ProgressEntry(textbook="Grammar 1", end_page="42")])
    store = FakeStore()
    coordinator = PersistenceCoordinator(store)

    result = await coordinator.save_all(board)
    assert result.total_saved == 1
    assert result.progress_missing == 1
    assert [p.student_id for p in store.saved] == [ready.student_id]
    assert missing.status == CardStatus.DIRTY
    assert missing.last_error == "Enter today's progress"
    assert board.missing_progress_cards() == [missing]

    with pytest.raises(ValidationError) as exc:
        await coordinator.save(missing)
    assert exc.value.rule == "progress_required"
    assert len(store.saved) == 1
