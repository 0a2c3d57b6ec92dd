"""Read-only access to the tenant's evaluation taxonomy and feed settings."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.config import settings
from academy.core.enums import AbsenceReason, OperationMode
from academy.core.models import FeedOptionSet, TenantFeedSettings
from academy.feed_input.schemas import FeedConfig, OptionSetRule

from .schemas import FeedOptionResponse, FeedOptionSetResponse, TenantFeedSettingsResponse

# Used when a tenant has not configured makeup defaults yet: every reason needs a makeup
# except an unexcused absence.
DEFAULT_MAKEUP_DEFAULTS = {
    AbsenceReason.SICK.value: True,
    AbsenceReason.FAMILY.value: True,
    AbsenceReason.SCHOOL_EVENT.value: True,
    AbsenceReason.UNEXCUSED.value: False,
    AbsenceReason.OTHER.value: True,
}


def _set_to_response(s: FeedOptionSet) -> FeedOptionSetResponse:
    return FeedOptionSetResponse(
        id=s.id,
        name=s.name,
        set_key=s.set_key,
        kind=s.kind,
        is_scored=s.is_scored,
        score_step=s.score_step,
        is_required=s.is_required,
        operation_modes=s.operation_modes,
        display_order=s.display_order,
        options=[
            FeedOptionResponse(id=o.id, label=o.label, score=o.score, display_order=o.display_order)
            for o in s.options
            if o.is_active and o.deleted_at is None
        ],
    )


async def _get_settings_row(db: AsyncSession, tenant_id: UUID) -> Optional[TenantFeedSettings]:
    result = await db.execute(select(TenantFeedSettings).where(TenantFeedSettings.tenant_id == tenant_id))
    return result.scalar_one_or_none()


async def get_feed_settings(db: AsyncSession, tenant_id: UUID) -> TenantFeedSettingsResponse:
    """Tenant settings with defaults filled in for anything not configured."""
    row = await _get_settings_row(db, tenant_id)
    if row is None:
        return TenantFeedSettingsResponse(
            operation_mode=OperationMode.HOMEROOM,
            makeup_defaults=dict(DEFAULT_MAKEUP_DEFAULTS),
            makeup_system_enabled=True,
            progress_enabled=False,
            absence_alert_threshold=settings.absence_alert_threshold,
        )
    return TenantFeedSettingsResponse(
        operation_mode=row.operation_mode,
        makeup_defaults=row.makeup_defaults if row.makeup_defaults is not None else dict(DEFAULT_MAKEUP_DEFAULTS),
        makeup_system_enabled=row.makeup_system_enabled,
        progress_enabled=row.progress_enabled,
        absence_alert_threshold=row.absence_alert_threshold or settings.absence_alert_threshold,
    )


async def list_option_sets(db: AsyncSession, tenant_id: UUID) -> List[FeedOptionSetResponse]:
    """Active option sets with their active options, in display order."""
    result = await db.execute(
        select(FeedOptionSet)
        .where(
            FeedOptionSet.tenant_id == tenant_id,
            FeedOptionSet.is_active.is_(True),
            FeedOptionSet.deleted_at.is_(None),
        )
        .order_by(FeedOptionSet.display_order, FeedOptionSet.name)
    )
    return [_set_to_response(s) for s in result.scalars().all()]


async def load_feed_config(db: AsyncSession, tenant_id: UUID) -> FeedConfig:
    """Everything validation and makeup resolution need for one tenant."""
    feed_settings = await get_feed_settings(db, tenant_id)
    option_sets = await list_option_sets(db, tenant_id)
    return FeedConfig(
        operation_mode=feed_settings.operation_mode,
        option_sets=[
            OptionSetRule(
                id=s.id,
                name=s.name,
                kind=s.kind,
                score_step=s.score_step,
                is_required=s.is_required,
                operation_modes=s.operation_modes,
            )
            for s in option_sets
        ],
        makeup_defaults=feed_settings.makeup_defaults,
        makeup_system_enabled=feed_settings.makeup_system_enabled,
        progress_enabled=feed_settings.progress_enabled,
    )
