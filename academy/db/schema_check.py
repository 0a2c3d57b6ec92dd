import asyncio
from typing import List

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

# Ensure all models are registered on Base.metadata
import academy.core.models  # noqa: F401
from academy.db.session import Base, engine


# Creation order follows foreign keys: taxonomy -> feeds -> values/tickets -> audit trail.
REQUIRED_TABLES: List[str] = [
    "tenant_feed_settings",
    "feed_option_sets",
    "feed_options",
    "student_feeds",
    "feed_values",
    "makeup_tickets",
    "makeup_ticket_audit_logs",
    "idempotency_keys",
]


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Ensure that all feed tables exist in the connected database.
    Missing tables (with their indexes) are created; existing ones are left untouched.
    Returns the names of the tables created.
    """
    async with db_engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            tables = [Base.metadata.tables[name] for name in missing]
            await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables))
    return missing


async def main() -> None:
    missing = await ensure_tables(engine)
    if missing:
        print("Created missing tables: " + ", ".join(missing))
    else:
        print("All required feed tables already exist in the database.")


if __name__ == "__main__":
    asyncio.run(main())
