"""Turns dirty cards into durable feed records: single save, bulk save, optimistic flag toggles."""

import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from academy.core.enums import CardStatus
from academy.core.exceptions import PersistenceError, ServiceError

from .card import FeedCard
from .optimistic import optimistic_update
from .stores import FeedStore, failed_bulk_response

logger = logging.getLogger(__name__)


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


class SaveOutcome(BaseModel):
    student_id: UUID
    idempotency_key: Optional[str] = None
    success: bool
    skipped: bool = False
    feed_id: Optional[UUID] = None
    version: Optional[int] = None
    error: Optional[str] = None


class BulkSaveResult(BaseModel):
    """Aggregate of a bulk save. Partial failure is a normal outcome, not an exception."""

    items: List[SaveOutcome] = Field(default_factory=list)
    total_saved: int = 0
    total_failed: int = 0
    # Cards in error state, rejected locally before any I/O.
    invalid_count: int = 0
    # Dirty cards held back because required progress is missing.
    progress_missing: int = 0

    @property
    def submitted(self) -> int:
        return self.total_saved + self.total_failed

    @property
    def is_partial(self) -> bool:
        return self.total_saved > 0 and self.total_failed > 0

    def failed_student_ids(self) -> List[UUID]:
        return [i.student_id for i in self.items if not i.success]


class PersistenceCoordinator:
    """
    Submits card drafts to a ``FeedStore``.

    Only the card being saved is marked in flight; every other card stays editable. A card whose
    previous submission was never acknowledged retries with the same idempotency key, so a save
    that did reach the store is replayed rather than applied twice.
    """

    def __init__(
        self,
        store: FeedStore,
        key_factory: Callable[[], str] = new_idempotency_key,
    ) -> None:
        self.store = store
        self.key_factory = key_factory

    def _key_for(self, card: FeedCard, idempotency_key: Optional[str]) -> str:
        return idempotency_key or card.retry_key() or self.key_factory()

    async def save(self, card: FeedCard, idempotency_key: Optional[str] = None) -> SaveOutcome:
        """
        Save one card.

        - error: raises ``ValidationError`` for the first failing rule; nothing is submitted
        - empty / saved / already in flight: no-op, returns a skipped outcome
        - dirty without required progress: raises ``ValidationError``; nothing is submitted
        - dirty: submits; on any failure the card stays dirty, leaves flight and the error is raised
        """
        if card.status == CardStatus.ERROR:
            raise card.validation_issue().to_error()
        if card.status != CardStatus.DIRTY or card.in_flight:
            return SaveOutcome(student_id=card.student_id, success=True, skipped=True)
        progress_issue = card.progress_issue()
        if progress_issue is not None:
            card.last_error = progress_issue.message
            raise progress_issue.to_error()

        key = self._key_for(card, idempotency_key)
        payload = card.build_payload(key)
        submitted = card.begin_save(key)
        try:
            response = await self.store.save(payload)
        except ServiceError as e:
            card.mark_failed(e.message)
            logger.warning("Save failed for student %s (%s): %s", card.student_id, key, e.message)
            raise
        except Exception as e:
            message = f"Save failed: {e.__class__.__name__}"
            card.mark_failed(message)
            logger.exception("Unexpected error saving student %s (%s)", card.student_id, key)
            raise PersistenceError(message) from e
        if not response.success:
            card.mark_failed(response.error or "Save failed")
            raise PersistenceError(response.error or "Save failed")
        card.mark_saved(submitted, response.feed_id, response.version)
        return SaveOutcome(
            student_id=card.student_id,
            idempotency_key=key,
            success=True,
            feed_id=response.feed_id,
            version=response.version,
        )

    async def save_all(self, cards: Iterable[FeedCard]) -> BulkSaveResult:
        """
        Save every dirty card in one bulk submission.

        Error cards are counted in ``invalid_count`` and cards missing required progress in
        ``progress_missing``; neither is sent. Each submitted card succeeds or fails on its own;
        calling again after a partial failure only resubmits the cards that are still dirty.
        """
        cards = list(cards)
        result = BulkSaveResult(invalid_count=sum(1 for c in cards if c.status == CardStatus.ERROR))
        dirty = []
        for card in cards:
            if card.status != CardStatus.DIRTY or card.in_flight:
                continue
            progress_issue = card.progress_issue()
            if progress_issue is not None:
                card.last_error = progress_issue.message
                result.progress_missing += 1
                continue
            dirty.append(card)
        if not dirty:
            return result

        by_key: Dict[str, FeedCard] = {}
        submitted = {}
        payloads = []
        for card in dirty:
            key = self._key_for(card, None)
            payloads.append(card.build_payload(key))
            submitted[key] = card.begin_save(key)
            by_key[key] = card

        try:
            response = await self.store.save_bulk(payloads)
        except ServiceError as e:
            logger.warning("Bulk save of %d cards not delivered: %s", len(payloads), e.message)
            response = failed_bulk_response(payloads, e.message)
        except Exception as e:
            logger.exception("Unexpected error in bulk save of %d cards", len(payloads))
            response = failed_bulk_response(payloads, f"Save failed: {e.__class__.__name__}")

        answered = set()
        for item in response.results:
            card = by_key.get(item.idempotency_key)
            if card is None:
                continue
            answered.add(item.idempotency_key)
            if item.success:
                card.mark_saved(submitted[item.idempotency_key], item.feed_id, item.version)
                result.total_saved += 1
            else:
                card.mark_failed(item.error or "Save failed")
                result.total_failed += 1
            result.items.append(
                SaveOutcome(
                    student_id=card.student_id,
                    idempotency_key=item.idempotency_key,
                    success=item.success,
                    feed_id=item.feed_id,
                    version=item.version,
                    error=item.error,
                )
            )

        for key, card in by_key.items():
            if key in answered:
                continue
            card.mark_failed("No result returned for this card")
            result.total_failed += 1
            result.items.append(
                SaveOutcome(
                    student_id=card.student_id,
                    idempotency_key=key,
                    success=False,
                    error="No result returned for this card",
                )
            )

        if result.total_failed:
            logger.warning(
                "Bulk save: %d saved, %d failed, %d invalid",
                result.total_saved, result.total_failed, result.invalid_count,
            )
        else:
            logger.info("Bulk save: %d saved", result.total_saved)
        return result

    async def toggle_flag(self, card: FeedCard, field: str, value: bool) -> SaveOutcome:
        """
        Flip a boolean field of a saved card right away and persist it; restore the previous
        value if the save fails.
        """
        if card.in_flight:
            raise PersistenceError("A save for this card is already in flight")
        return await optimistic_update(
            card.draft,
            field,
            value,
            lambda: self.save(card),
            setter=lambda _draft, attr, new_value: card.edit(**{attr: new_value}),
        )
