"""Read-only feed configuration for the teacher input screen."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.schemas import CurrentUser
from academy.db.session import get_db

from . import service
from .schemas import FeedOptionSetResponse, TenantFeedSettingsResponse

router = APIRouter(prefix="/api/v1/feed-config", tags=["feed-config"])


@router.get("/option-sets", response_model=List[FeedOptionSetResponse])
async def list_option_sets(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeedOptionSetResponse]:
    """Active option sets and options of the tenant, in display order."""
    return await service.list_option_sets(db, current_user.tenant_id)


@router.get("/settings", response_model=TenantFeedSettingsResponse)
async def get_feed_settings(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> TenantFeedSettingsResponse:
    """Operation mode, absence reason makeup defaults and the monthly absence alert threshold."""
    return await service.get_feed_settings(db, current_user.tenant_id)
