"""Adapters from the coordinator to the save primitive: over HTTP, or in-process against the service layer."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from uuid import UUID

import httpx
from fastapi import status
from sqlalchemy.ext.asyncio import async_sessionmaker

from academy.api.v1.feeds import service as feed_service
from academy.api.v1.feeds.schemas import (
    BulkSaveItemResult,
    BulkSaveRequest,
    BulkSaveResponse,
    FeedSavePayload,
    FeedSaveResponse,
)
from academy.core.config import settings
from academy.core.exceptions import PersistenceError, ServiceError, ValidationError

logger = logging.getLogger(__name__)

SAVE_PATH = "/api/v1/feeds/save"
SAVE_BULK_PATH = "/api/v1/feeds/save-bulk"


class FeedStore(ABC):
    """
    Durable store for feed records.

    ``save`` raises ``PersistenceError`` when the store cannot be reached and ``ServiceError``
    (or a subclass) when it rejects the payload. ``save_bulk`` reports per-item outcomes and
    raises only when the whole request could not be delivered.
    """

    @abstractmethod
    async def save(self, payload: FeedSavePayload) -> FeedSaveResponse:
        ...

    @abstractmethod
    async def save_bulk(self, payloads: List[FeedSavePayload]) -> BulkSaveResponse:
        ...


def _error_detail(response: httpx.Response) -> Tuple[str, Optional[str]]:
    """(message, failing validation rule or None) from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}", None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return detail.get("message") or str(detail), detail.get("rule")
    return str(detail or body), None


def api_client(token: str, base_url: Optional[str] = None, timeout: float = 10.0) -> httpx.AsyncClient:
    """Client for the feeds API authenticated with a bearer token. base_url defaults to API_BASE_URL."""
    base_url = base_url or settings.api_base_url
    if not base_url:
        raise ValueError("API_BASE_URL is not configured")
    return httpx.AsyncClient(
        base_url=base_url,
        headers={"Authorization": f"Bearer {token}"},
        timeout=timeout,
    )


class HttpFeedStore(FeedStore):
    """Talks to the feeds API with an ``httpx.AsyncClient`` whose base_url and auth are preconfigured."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def _post(self, path: str, body: dict) -> httpx.Response:
        try:
            return await self.client.post(path, json=body)
        except httpx.HTTPError as e:
            logger.warning("Feed store unreachable at %s: %s", path, e)
            raise PersistenceError(f"Feed store unreachable: {e}") from e

    async def save(self, payload: FeedSavePayload) -> FeedSaveResponse:
        response = await self._post(SAVE_PATH, payload.model_dump(mode="json"))
        if response.is_success:
            return FeedSaveResponse.model_validate(response.json())
        message, rule = _error_detail(response)
        if response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY:
            raise ValidationError(message, rule or "rejected_by_store")
        if response.status_code >= 500:
            raise PersistenceError(message, response.status_code)
        raise ServiceError(message, response.status_code)

    async def save_bulk(self, payloads: List[FeedSavePayload]) -> BulkSaveResponse:
        request = BulkSaveRequest(payloads=payloads)
        response = await self._post(SAVE_BULK_PATH, request.model_dump(mode="json"))
        if not response.is_success:
            raise PersistenceError(_error_detail(response)[0], response.status_code)
        return BulkSaveResponse.model_validate(response.json())


class ServiceFeedStore(FeedStore):
    """Calls the service layer directly, one session per call. Used by workers and tests."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        tenant_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> None:
        self.session_factory = session_factory
        self.tenant_id = tenant_id
        self.user_id = user_id

    async def save(self, payload: FeedSavePayload) -> FeedSaveResponse:
        async with self.session_factory() as db:
            return await feed_service.save_feed(db, self.tenant_id, self.user_id, payload)

    async def save_bulk(self, payloads: List[FeedSavePayload]) -> BulkSaveResponse:
        async with self.session_factory() as db:
            return await feed_service.save_feeds_bulk(db, self.tenant_id, self.user_id, payloads)


def failed_bulk_response(payloads: List[FeedSavePayload], error: str) -> BulkSaveResponse:
    """Every item failed with the same error (request never delivered)."""
    results = [
        BulkSaveItemResult(
            student_id=p.student_id,
            idempotency_key=p.idempotency_key,
            success=False,
            error=error,
        )
        for p in payloads
    ]
    return BulkSaveResponse(success=False, results=results, total_saved=0, total_failed=len(results))
