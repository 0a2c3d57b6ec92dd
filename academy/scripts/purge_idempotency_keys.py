"""
Delete idempotency keys whose replay window has passed.

Safe to run at any time: an expired key is never replayed, so removing it changes nothing
for clients. Usage: python -m academy.scripts.purge_idempotency_keys
"""

import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.models import IdempotencyKey
from academy.db.session import AsyncSessionLocal


async def purge_expired_keys(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """Delete keys expired at ``now``. Returns the number of rows removed."""
    now = now or datetime.utcnow()
    result = await session.execute(delete(IdempotencyKey).where(IdempotencyKey.expires_at <= now))
    await session.commit()
    return result.rowcount or 0


async def purge() -> None:
    async with AsyncSessionLocal() as session:
        removed = await purge_expired_keys(session)
    print(f"Done. Removed {removed} expired idempotency key(s).")


def main() -> None:
    asyncio.run(purge())


if __name__ == "__main__":
    main()
