"""Write-behind cache of unsaved card drafts, keyed by (student_id, date)."""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Optional
from uuid import UUID

from academy.core.config import settings
from academy.core.enums import CardStatus

from .card import CardBoard, CardKey, FeedCard
from .schemas import FeedDraft

logger = logging.getLogger(__name__)


def cache_key(student_id: UUID, feed_date: date) -> str:
    return f"{student_id}_{feed_date.isoformat()}"


class DraftStore(ABC):
    """Durable key-value storage for drafts."""

    @abstractmethod
    def read(self, key: str) -> Optional[FeedDraft]:
        ...

    @abstractmethod
    def write(self, key: str, draft: FeedDraft) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryDraftStore(DraftStore):
    def __init__(self) -> None:
        self.items: Dict[str, str] = {}

    def read(self, key: str) -> Optional[FeedDraft]:
        raw = self.items.get(key)
        return FeedDraft.model_validate_json(raw) if raw is not None else None

    def write(self, key: str, draft: FeedDraft) -> None:
        self.items[key] = draft.model_dump_json()

    def delete(self, key: str) -> None:
        self.items.pop(key, None)


class FileDraftStore(DraftStore):
    """One JSON file per draft under ``directory``."""

    def __init__(self, directory: Optional[str] = None) -> None:
        self.directory = directory or settings.draft_cache_dir
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def read(self, key: str) -> Optional[FeedDraft]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            raw = fh.read()
        try:
            return FeedDraft.model_validate_json(raw)
        except ValueError:
            logger.warning("Discarding unreadable draft %s", path)
            os.remove(path)
            return None

    def write(self, key: str, draft: FeedDraft) -> None:
        path = self._path(key)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(draft.model_dump_json())
        os.replace(tmp, path)

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


class DraftCache:
    """
    Coalesces rapid edits: each change re-arms a short timer and only the latest draft of a card
    is written when it fires. Pass ``observe`` as the card/board ``on_change`` callback.
    """

    def __init__(self, store: DraftStore, debounce_seconds: Optional[float] = None) -> None:
        self.store = store
        self.debounce_seconds = settings.draft_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._pending: Dict[CardKey, FeedDraft] = {}
        self._timers: Dict[CardKey, asyncio.TimerHandle] = {}

    def observe(self, card: FeedCard) -> None:
        """Queue the card's draft while it has unsaved work; drop the cache entry otherwise."""
        if card.status in (CardStatus.DIRTY, CardStatus.ERROR):
            self._pending[card.key] = card.draft.model_copy(deep=True)
            self._arm(card.key)
        else:
            self.clear(card.key)

    def _arm(self, key: CardKey) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(key)
            return
        self._timers[key] = loop.call_later(self.debounce_seconds, self._write, key)

    def _write(self, key: CardKey) -> None:
        self._timers.pop(key, None)
        draft = self._pending.pop(key, None)
        if draft is None:
            return
        try:
            self.store.write(cache_key(*key), draft)
        except OSError:
            # Keep it queued so the next edit or flush retries.
            self._pending.setdefault(key, draft)
            logger.exception("Could not write draft for %s", key)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def flush(self) -> None:
        """Write every queued draft now."""
        for key in list(self._pending):
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            self._write(key)

    def clear(self, key: CardKey) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._pending.pop(key, None)
        self.store.delete(cache_key(*key))

    def recover(self, key: CardKey) -> Optional[FeedDraft]:
        return self.store.read(cache_key(*key))

    def recover_into(self, board: CardBoard) -> int:
        """Restore cached drafts onto freshly loaded cards. Returns the number recovered."""
        recovered = 0
        for card in board:
            draft = self.recover(card.key)
            if draft is None:
                continue
            card.restore_draft(draft)
            recovered += 1
        if recovered:
            logger.info("Recovered %d unsaved drafts for class %s on %s", recovered, board.class_id, board.feed_date)
        return recovered
