"""Pytest configuration and fixtures for hookrelay tests."""

import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from hookrelay.config import Settings, clear_settings_cache, get_settings
from hookrelay.db.models import Base, WebhookEndpoint
from hookrelay.db.session import SessionFactory, build_engine, build_session_factory, get_session
from hookrelay.main import create_app
from hookrelay.webhook.queue import DeliveryQueue
from hookrelay.webhook.registry import SqlEndpointRegistry, create_endpoint

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="session")
def database_url() -> Generator[str, None, None]:
    """Database URL for the test session.

    In-memory SQLite by default; set HOOKRELAY_TEST_POSTGRES=1 to run the
    suite against a PostgreSQL container.
    """
    if not os.environ.get("HOOKRELAY_TEST_POSTGRES"):
        yield SQLITE_URL
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16-alpine") as postgres:
        # testcontainers returns psycopg2 URL, convert to asyncpg
        yield postgres.get_connection_url().replace("psycopg2", "asyncpg")


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings.

    One consumer per run_once() keeps jobs strictly sequential, which the
    single shared in-memory SQLite connection requires.
    """
    clear_settings_cache()
    return Settings(
        database_url=database_url,
        api_host="127.0.0.1",
        api_port=18000,
        instance_id="test-instance",
        webhook_timeout=2.0,
        worker_concurrency=1,
        worker_poll_interval=0.01,
        queue_maintenance_interval=0.05,
        dlq_webhook_url=None,
    )


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with fresh tables."""
    engine = build_engine(test_settings)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> SessionFactory:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_session(session_factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def registry(session_factory: SessionFactory) -> SqlEndpointRegistry:
    return SqlEndpointRegistry(session_factory)


@pytest.fixture
def queue(session_factory: SessionFactory, test_settings: Settings) -> DeliveryQueue:
    return DeliveryQueue(session_factory, test_settings)


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_endpoint(
    session_factory: SessionFactory,
    tenant_id: uuid.UUID,
) -> Callable[..., Awaitable[WebhookEndpoint]]:
    """Factory registering endpoints for the test tenant."""

    async def _make(
        url: str = "https://hooks.example.com/receive",
        events: list[str] | None = None,
        secret: str | None = "s",
        is_active: bool = True,
        tenant: uuid.UUID | None = None,
    ) -> WebhookEndpoint:
        async with session_factory() as session:
            endpoint = await create_endpoint(
                session,
                tenant_id=tenant or tenant_id,
                url=url,
                events=events,
                secret=secret,
            )
            endpoint.is_active = is_active
            await session.commit()
            return endpoint

    return _make


@pytest_asyncio.fixture
async def mock_http() -> AsyncGenerator[Callable[[Callable], httpx.AsyncClient], None]:
    """Factory for HTTP clients whose requests are answered by a handler."""
    clients: list[httpx.AsyncClient] = []

    def _make(handler: Callable) -> httpx.AsyncClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(http_client)
        return http_client

    yield _make

    for http_client in clients:
        await http_client.aclose()


@pytest_asyncio.fixture
async def app(
    test_settings: Settings,
    session_factory: SessionFactory,
) -> AsyncGenerator[FastAPI, None]:
    """Create test FastAPI application."""
    application = create_app(test_settings)

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session
            await session.commit()

    application.dependency_overrides[get_session] = override_get_session
    application.dependency_overrides[get_settings] = lambda: test_settings

    yield application

    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
