"""
Pytest fixtures for test database, client, pinned clock and zones.

Each test gets its own database (a SQLite file under tmp_path unless
TEST_DATABASE_URL points somewhere else) with tables created and dropped
around it. Every session opens its own connection, so concurrent admission
tests race through real, separate transactions.
"""

import os

os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SWEEP_LOCK_STRATEGY", "local")
os.environ.setdefault("CHECKIN_MODE", "confirmed")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.main import app
from app.api.deps import get_now, get_session_factory
from app.db.base import Base
from app.db.session import get_db
from app.models.zone import Zone
from app.schemas.zone import ZoneCreate
from app.services import zone_service

ADMIN_KEY = os.environ["ADMIN_API_KEY"]

# Pinned "now" for every test; T in the scenario descriptions
T0 = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

# A small square around (52.0, 4.0) and a slot inside it
ZONE_BOUNDARY = [
    {"lat": 51.999, "lng": 3.999},
    {"lat": 51.999, "lng": 4.001},
    {"lat": 52.001, "lng": 4.001},
    {"lat": 52.001, "lng": 3.999},
]
SLOT_A1_RING = [
    {"lat": 51.9995, "lng": 3.9995},
    {"lat": 51.9995, "lng": 3.9998},
    {"lat": 51.9998, "lng": 3.9998},
    {"lat": 51.9998, "lng": 3.9995},
]
INSIDE_A1 = {"lat": 51.9996, "lng": 3.9996}
INSIDE_ZONE_OUTSIDE_A1 = {"lat": 52.0005, "lng": 4.0005}
OUTSIDE_ZONE = {"lat": 52.1, "lng": 4.1}


def at(minutes: float) -> datetime:
    """T0 offset by `minutes`."""
    return T0 + timedelta(minutes=minutes)


def user_headers(user_id: str) -> dict:
    return {"X-User-Id": user_id}


class Clock:
    """Mutable clock handed to the app through the get_now override."""

    def __init__(self, now: datetime):
        self.now = now

    def set(self, minutes: float) -> datetime:
        self.now = at(minutes)
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock(T0)


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, clock: Clock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and the pinned clock."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_now] = lambda: clock.now
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Key": ADMIN_KEY}


async def make_zone(session_factory, name: str, capacity: int, slots=None) -> Zone:
    zone_data = ZoneCreate(
        name=name,
        boundary=ZONE_BOUNDARY,
        capacity=capacity,
        slots=slots or [],
    )
    async with session_factory() as session:
        return await zone_service.create_zone(session, zone_data)


@pytest_asyncio.fixture
async def single_zone(session_factory) -> Zone:
    """Capacity 1 with one slot, A1."""
    return await make_zone(
        session_factory,
        "Single",
        capacity=1,
        slots=[{"slot_id": "A1", "tag": "A-1", "geometry": {"type": "polygon", "ring": SLOT_A1_RING}}],
    )


@pytest_asyncio.fixture
async def pair_zone(session_factory) -> Zone:
    """Capacity 2 with slots A1 (polygon) and A2 (circle)."""
    return await make_zone(
        session_factory,
        "Pair",
        capacity=2,
        slots=[
            {"slot_id": "A1", "tag": "A-1", "geometry": {"type": "polygon", "ring": SLOT_A1_RING}},
            {
                "slot_id": "A2",
                "tag": "A-2",
                "geometry": {"type": "circle", "center": {"lat": 52.0005, "lng": 4.0005}, "radius_m": 5},
            },
        ],
    )
