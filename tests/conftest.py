"""Test fixtures — an in-memory database per test and a recording transport.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets a fresh in-memory SQLite database (aiosqlite). StaticPool
   keeps the single connection alive so every session sees the same tables.
2. The app's get_db is overridden to hand out that session, so data set up
   by a test and data written by the routes live in the same place.
3. The broadcast transport is replaced by RecordingTransport (or
   FailingTransport) so tests can assert exactly which channels got which
   payload, without a Redis server.
"""

import itertools
import os

# Must be set before safespace.config is imported.
os.environ.setdefault("SAFESPACE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from safespace.auth.jwt import create_access_token
from safespace.db.engine import get_db
from safespace.db.models import Base
from safespace.events.store import EventStore
from safespace.main import app
from safespace.realtime.broadcaster import Broadcaster, DeliveryFailureRecorder
from safespace.realtime.dependencies import get_broadcaster
from safespace.realtime.transport import TransportError
from safespace.services.user_service import UserService

TEST_DB_URL = "sqlite+aiosqlite://"


class RecordingTransport:
    """Transport that remembers every publish instead of sending it."""

    def __init__(self):
        self.published: list[tuple[list[str], str, dict]] = []

    async def publish(self, channels, event_name, payload):
        self.published.append((list(channels), event_name, payload))

    def named(self, event_name: str) -> list[tuple[list[str], dict]]:
        return [(ch, p) for ch, name, p in self.published if name == event_name]

    def last(self, event_name: str) -> tuple[list[str], dict]:
        matches = self.named(event_name)
        assert matches, f"nothing published as {event_name}"
        return matches[-1]


class FailingTransport(RecordingTransport):
    """Transport whose every publish fails, like an unreachable Redis."""

    async def publish(self, channels, event_name, payload):
        self.published.append((list(channels), event_name, payload))
        raise TransportError("connection refused")


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session on a throwaway in-memory database."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def failing_transport():
    return FailingTransport()


def _broadcaster(db_session, transport) -> Broadcaster:
    return Broadcaster(
        transport,
        on_critical_failure=[DeliveryFailureRecorder(EventStore(db_session))],
    )


@pytest.fixture()
def broadcaster(db_session, transport):
    return _broadcaster(db_session, transport)


async def _client_for(db_session, transport):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: _broadcaster(
        db_session, transport
    )

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(db_session, transport):
    """HTTP client whose broadcasts land in `transport`.

    Auth is NOT overridden: requests carry real JWTs from the `auth` helper,
    so the Bearer pipeline is exercised on every call.
    """
    async for ac in _client_for(db_session, transport):
        yield ac


@pytest_asyncio.fixture()
async def failing_client(db_session, failing_transport):
    """HTTP client whose every broadcast fails."""
    async for ac in _client_for(db_session, failing_transport):
        yield ac


@pytest.fixture()
def auth():
    """auth(user) → Authorization header for that user."""
    def _headers(user) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers


@pytest.fixture()
def make_user(db_session):
    """make_user("Name", "role", ...) → a committed User row."""
    counter = itertools.count(1)

    async def _make(name: str, *roles: str, guardian=None, status: str = "active"):
        n = next(counter)
        return await UserService(db_session).create(
            name=name,
            email=f"{name.lower().replace(' ', '.')}.{n}@example.org",
            roles=list(roles),
            guardian_id=guardian.id if guardian else None,
            status=status,
        )

    return _make
