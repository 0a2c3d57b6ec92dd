from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from academy.core.enums import OperationMode


class FeedOptionResponse(BaseModel):
    id: UUID
    label: str
    score: Optional[float] = None
    display_order: int


class FeedOptionSetResponse(BaseModel):
    id: UUID
    name: str
    set_key: str
    kind: str
    is_scored: bool
    score_step: Optional[float] = None
    is_required: bool
    operation_modes: Optional[List[OperationMode]] = None
    display_order: int
    options: List[FeedOptionResponse] = Field(default_factory=list)


class TenantFeedSettingsResponse(BaseModel):
    operation_mode: OperationMode
    makeup_defaults: Dict[str, bool]
    makeup_system_enabled: bool
    progress_enabled: bool
    absence_alert_threshold: int
