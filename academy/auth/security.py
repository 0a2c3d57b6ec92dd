from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID

from jose import jwt

from academy.core.config import settings


def create_access_token(
    *, subject: Dict, expires_minutes: Optional[int] = None
) -> str:
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes

    to_encode = subject.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
    )
    return encoded_jwt


def token_for(user_id: UUID, tenant_id: UUID, role: str = "TEACHER", expires_minutes: Optional[int] = None) -> str:
    """Access token with the claims get_current_user expects."""
    return create_access_token(
        subject={"user_id": str(user_id), "tenant_id": str(tenant_id), "role": role},
        expires_minutes=expires_minutes,
    )
