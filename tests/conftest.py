import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from datetime import date
from types import SimpleNamespace
from typing import AsyncGenerator, Callable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from academy.auth.dependencies import get_current_user
from academy.auth.schemas import CurrentUser
from academy.core.enums import OperationMode
from academy.core.models import FeedOption, FeedOptionSet, TenantFeedSettings
from academy.db.session import Base, get_db
from academy.feed_input.schemas import FeedConfig, OptionSetRule
from academy.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
TEACHER_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
CLASS_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")

# Evaluation taxonomy shared by the pure engine tests and the seeded database.
IDS = SimpleNamespace(
    tenant=TENANT_ID,
    teacher=TEACHER_ID,
    class_id=CLASS_ID,
    homework=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000001"),
    homework_done=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000011"),
    homework_missed=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000012"),
    attitude=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000002"),
    attitude_good=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000021"),
    exam=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000003"),
    student_a=uuid.UUID("bbbbbbbb-0000-0000-0000-00000000000a"),
    student_b=uuid.UUID("bbbbbbbb-0000-0000-0000-00000000000b"),
)


@pytest.fixture()
def ids() -> SimpleNamespace:
    return IDS


@pytest.fixture()
def feed_config() -> FeedConfig:
    """Homeroom tenant with two required select sets and an optional exam set."""
    return FeedConfig(
        operation_mode=OperationMode.HOMEROOM,
        option_sets=[
            OptionSetRule(id=IDS.homework, name="Homework"),
            OptionSetRule(id=IDS.attitude, name="Attitude"),
            OptionSetRule(id=IDS.exam, name="Weekly test", kind="exam", score_step=0.5, is_required=False),
        ],
        makeup_defaults={"sick": True, "unexcused": False},
    )


@pytest.fixture()
async def engine():
    """One in-memory database per test; StaticPool keeps every session on the same connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async with session_factory() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
async def seeded(db_session: AsyncSession) -> SimpleNamespace:
    """Taxonomy and tenant settings matching ``feed_config``."""
    db_session.add_all(
        [
            FeedOptionSet(id=IDS.homework, tenant_id=TENANT_ID, name="Homework", set_key="homework", display_order=1),
            FeedOptionSet(id=IDS.attitude, tenant_id=TENANT_ID, name="Attitude", set_key="attitude", display_order=2),
            FeedOptionSet(
                id=IDS.exam,
                tenant_id=TENANT_ID,
                name="Weekly test",
                set_key="weekly_test",
                kind="exam",
                is_scored=True,
                score_step=0.5,
                is_required=False,
                display_order=3,
            ),
        ]
    )
    await db_session.flush()
    db_session.add_all(
        [
            FeedOption(id=IDS.homework_done, set_id=IDS.homework, label="Done", score=1, display_order=1),
            FeedOption(id=IDS.homework_missed, set_id=IDS.homework, label="Missed", score=0, display_order=2),
            FeedOption(id=IDS.attitude_good, set_id=IDS.attitude, label="Good", score=1, display_order=1),
            TenantFeedSettings(
                tenant_id=TENANT_ID,
                operation_mode="homeroom",
                makeup_defaults={"sick": True, "unexcused": False},
            ),
        ]
    )
    await db_session.commit()
    return IDS


@pytest.fixture()
def current_user() -> CurrentUser:
    return CurrentUser(id=TEACHER_ID, tenant_id=TENANT_ID, role="TEACHER")


@pytest.fixture()
async def client(db_session: AsyncSession, current_user: CurrentUser) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, authenticated as a teacher of the test tenant."""
    app.dependency_overrides[get_current_user] = lambda: current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
def feed_body() -> Callable[..., dict]:
    """Build a save request body; present records get every required selection by default."""

    def build(student_id: uuid.UUID, feed_date: date, attendance_status: str = "present",
              key: Optional[str] = None, **extra) -> dict:
        body = {
            "student_id": str(student_id),
            "class_id": str(CLASS_ID),
            "feed_date": feed_date.isoformat(),
            "attendance_status": attendance_status,
            "idempotency_key": key or uuid.uuid4().hex,
        }
        if attendance_status != "absent":
            body["feed_values"] = [
                {"set_id": str(IDS.homework), "option_id": str(IDS.homework_done)},
                {"set_id": str(IDS.attitude), "option_id": str(IDS.attitude_good)},
            ]
        body.update(extra)
        return body

    return build
