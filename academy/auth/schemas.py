from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Caller resolved from the bearer token. Every query is scoped to tenant_id."""

    id: UUID
    tenant_id: UUID
    role: str
    name: Optional[str] = None
