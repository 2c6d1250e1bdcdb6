"""
Shared test fixtures for Moderation Gateway tests.

Provides the test store, a controllable clock, a fake moderation backend,
test clients, and developer/API key fixtures.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from gateway.auth.dependencies import get_clock, get_forwarder
from gateway.auth.jwt import create_access_token
from gateway.config import ForwarderPolicy, settings
from gateway.database import Base, get_session_factory
from gateway.main import app
from gateway.middleware.rate_limit import reset_limiter
from gateway.services.forwarder import ProxyForwarder
from gateway.services.key_registry import KeyRegistry

# Import models so they're registered with Base.metadata before table creation
from gateway.models import APIKey, Developer

# Test database URL (uses separate test database)
TEST_DATABASE_URL = settings.test_database_url

# NullPool gives every session its own connection, which the concurrency tests rely on
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    poolclass=NullPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

BACKEND_URL = "http://moderation-backend.test"
START_TIME = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Stands in for ``SystemClock``; time only moves when a test moves it."""

    def __init__(self, start: datetime = START_TIME):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    def set(self, moment: datetime) -> None:
        self.current = moment


class FakeBackend:
    """
    Moderation backend served through ``httpx.MockTransport``.

    Queued items are consumed in order: an ``httpx.Response`` is returned,
    an exception is raised. With an empty queue every request gets a 200.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.queued: list[httpx.Response | Exception] = []

    def queue(self, *items: httpx.Response | Exception) -> None:
        self.queued.extend(items)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued:
            item = self.queued.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return httpx.Response(200, json={"flagged": False, "categories": []})


async def no_sleep(_: float) -> None:
    return None


# --- Rate Limiter Reset Fixture ---


@pytest.fixture(autouse=True)
def reset_edge_rate_limiter():
    """Clear slowapi counters so portal limits don't leak between tests."""
    reset_limiter()
    yield


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Create tables before each test function, drop after.
    Provides isolated store state per test.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield TestSessionLocal

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# --- Clock and Backend Fixtures ---


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def forwarder(backend: FakeBackend) -> AsyncGenerator[ProxyForwarder, None]:
    """Forwarder wired to the fake backend, with retry delays skipped."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    yield ProxyForwarder(client, ForwarderPolicy(backend_url=BACKEND_URL), sleep=no_sleep)
    await client.aclose()


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
    forwarder: ProxyForwarder,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client configured for testing.
    Overrides the store, clock and forwarder dependencies.
    """
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_forwarder] = lambda: forwarder

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        follow_redirects=True,
    ) as client:
        yield client

    app.dependency_overrides.clear()


# --- Authentication Helper Fixtures ---


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Factory fixture for creating X-API-Key headers."""

    def _auth_headers(api_key: str) -> dict[str, str]:
        return {"X-API-Key": api_key}

    return _auth_headers


@pytest.fixture
def bearer_headers() -> Callable[[Developer], dict[str, str]]:
    """Factory fixture for developer portal bearer headers."""

    def _bearer_headers(developer: Developer) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(str(developer.id))}"}

    return _bearer_headers


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": settings.admin_token}


# --- Developer and Key Fixtures ---


async def _create_developer(
    session_factory: async_sessionmaker[AsyncSession], email: str
) -> Developer:
    async with session_factory() as session:
        developer = Developer(email=email, password_hash="portal-managed")
        session.add(developer)
        await session.commit()
    return developer


@pytest_asyncio.fixture
async def developer(session_factory: async_sessionmaker[AsyncSession]) -> Developer:
    return await _create_developer(session_factory, "dev@example.com")


@pytest_asyncio.fixture
async def second_developer(session_factory: async_sessionmaker[AsyncSession]) -> Developer:
    """A second developer for ownership/authorization scenarios."""
    return await _create_developer(session_factory, "other@example.com")


@pytest.fixture
def registry(session_factory: async_sessionmaker[AsyncSession]) -> KeyRegistry:
    return KeyRegistry(session_factory, settings.key_policy())


@pytest_asyncio.fixture
async def api_key(registry: KeyRegistry, developer: Developer) -> APIKey:
    """An active key with the default monthly quota."""
    return await registry.create_key(developer.id, "Test key")


@pytest_asyncio.fixture
async def second_api_key(registry: KeyRegistry, second_developer: Developer) -> APIKey:
    return await registry.create_key(second_developer.id, "Other key")
