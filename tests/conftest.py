import os
from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, time, timedelta
from uuid import uuid4

# Settings are read on import, so the environment comes first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("QUEUE_CHANNEL_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.clock import local_instant, operating_date
from app.core.queue_channel import InMemoryQueueChannel, get_queue_channel
from app.core.security import create_actor_token
from app.database import get_db
from app.main import app
from app.models import metadata
from app.schemas.actors import ActorContext, ActorRole
from app.schemas.affiliations import (
    AffiliationCreate,
    AffiliationResponse,
    DayOfWeek,
    ScheduleUpdate,
    TimeRange,
    WeeklyDay,
)
from app.services.affiliation_service import AffiliationService
from app.services.queue_projector import QueueProjector


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine; each connection is a real concurrent writer."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Create test session factory."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def queue_channel() -> InMemoryQueueChannel:
    return InMemoryQueueChannel()


@pytest.fixture
def projector(queue_channel) -> QueueProjector:
    return QueueProjector(queue_channel)


@pytest_asyncio.fixture
async def client(session_factory, queue_channel) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with one database session per request."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_queue_channel] = lambda: queue_channel

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def facility_id():
    return uuid4()


@pytest.fixture
def doctor() -> ActorContext:
    return ActorContext(actor_id=uuid4(), role=ActorRole.DOCTOR)


@pytest.fixture
def hospital_admin(facility_id) -> ActorContext:
    return ActorContext(actor_id=uuid4(), role=ActorRole.HOSPITAL_ADMIN, facility_id=facility_id)


@pytest.fixture
def staff(facility_id) -> ActorContext:
    return ActorContext(actor_id=uuid4(), role=ActorRole.STAFF, facility_id=facility_id)


@pytest.fixture
def patient() -> ActorContext:
    return ActorContext(actor_id=uuid4(), role=ActorRole.PATIENT)


@pytest.fixture
def make_patient() -> Callable[[], ActorContext]:
    return lambda: ActorContext(actor_id=uuid4(), role=ActorRole.PATIENT)


@pytest.fixture
def auth_headers() -> Callable[[ActorContext], dict[str, str]]:
    """Bearer headers carrying an actor's claims."""

    def _headers(actor: ActorContext) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_actor_token(actor)}"}

    return _headers


@pytest.fixture
def slot_at() -> Callable[..., datetime]:
    """Wall-clock instant in the operating time zone, a number of days from today."""

    def _slot_at(hour: int, minute: int = 0, days: int = 1) -> datetime:
        return local_instant(operating_date() + timedelta(days=days), time(hour, minute))

    return _slot_at


@pytest.fixture
def tomorrow() -> date:
    return operating_date() + timedelta(days=1)


@pytest_asyncio.fixture
async def affiliation(db_session, doctor, hospital_admin, facility_id) -> AffiliationResponse:
    """Approved affiliation working 09:00-17:00 every day, 15 minute slots."""
    service = AffiliationService(db_session)
    pending = await service.request_affiliation(
        doctor,
        AffiliationCreate(doctor_id=doctor.actor_id, facility_id=facility_id, slot_duration_minutes=15),
    )
    await service.respond(hospital_admin, pending.id, approve=True)
    return await service.update_schedule(
        doctor,
        pending.id,
        ScheduleUpdate(
            weekly_schedule=[
                WeeklyDay(day=day, slots=[TimeRange(start=time(9, 0), end=time(17, 0))])
                for day in DayOfWeek
            ]
        ),
    )
