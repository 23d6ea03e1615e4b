"""Pytest fixtures for sync engine tests."""

import json
from collections.abc import AsyncGenerator, Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from syncengine.config import Settings, get_settings
from syncengine.database import Base, get_db
from syncengine.main import app
from syncengine.models import SyncSource, SyncState
from syncengine.routers.sync import get_sync_service
from syncengine.security import limiter
from syncengine.services.ingestion import JOB_RETRY_POLICIES, SyncService
from syncengine.services.providers import (
    CRMClient,
    MessagingClient,
    PaymentsPrimaryClient,
    PaymentsSecondaryClient,
)
from syncengine.services.rate_limiter import RateLimiter

# Test database URL - in-memory SQLite, schema built from model metadata
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
ADMIN_KEY = "test-admin-key"


def _engine():
    return create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        admin_api_key=ADMIN_KEY,
        scheduler_enabled=False,
        debug=True,
    )


@pytest_asyncio.fixture
async def async_engine():
    """Create async engine with the full schema."""
    engine = _engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def db_session_without_state() -> AsyncGenerator[AsyncSession, None]:
    """Session on a database that never got the sync_state table."""
    engine = _engine()
    tables = [table for table in Base.metadata.sorted_tables if table.name != SyncState.__tablename__]
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables))

    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session
        await session.rollback()
    await engine.dispose()


@pytest.fixture
def fast_limiters() -> dict[SyncSource, RateLimiter]:
    """Limiters that never make tests wait."""
    return {source: RateLimiter(10_000, burst_size=100, name=source) for source in SyncSource}


@pytest.fixture
def fast_retry_policies():
    """Job retry policies with millisecond backoff."""
    return {
        source: replace(policy, initial_delay_ms=1, max_delay_ms=1)
        for source, policy in JOB_RETRY_POLICIES.items()
    }


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def _json_response(status_code: int, body: Any) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(body).encode(),
        headers={"Content-Type": "application/json"},
    )


@pytest.fixture
def make_service(db_session, fast_limiters, fast_retry_policies):
    """Build a SyncService whose provider clients talk to MockTransports."""

    def _make(
        primary_handler=None,
        secondary_handler=None,
        crm_handler=None,
        messaging_handler=None,
        db=None,
    ) -> SyncService:
        def unused(request: httpx.Request) -> httpx.Response:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")

        return SyncService(
            db or db_session,
            payments_primary=PaymentsPrimaryClient(
                api_key="sk_test", transport=mock_transport(primary_handler or unused)
            ),
            payments_secondary=PaymentsSecondaryClient(
                client_id="client", secret="secret", transport=mock_transport(secondary_handler or unused)
            ),
            crm=CRMClient(
                api_key="crm_key", location_id="loc_1", transport=mock_transport(crm_handler or unused)
            ),
            messaging=MessagingClient(
                api_key="mc_key", transport=mock_transport(messaging_handler or unused)
            ),
            limiters=fast_limiters,
            retry_policies=fast_retry_policies,
        )

    return _make


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, test_settings: Settings, monkeypatch
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database and settings overrides."""
    # Continuations would otherwise run against the real database
    monkeypatch.setattr(get_settings(), "auto_continue", False)

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    limiter.reset()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def use_service(make_service):
    """Route POST /sync/{source} through a service built by make_service."""

    def _use(**handlers) -> SyncService:
        service = make_service(**handlers)
        app.dependency_overrides[get_sync_service] = lambda: service
        return service

    return _use


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"x-admin-key": ADMIN_KEY}


def _payment_intent(pi_id: str, created: int, email: str | None = "buyer@example.com") -> dict[str, Any]:
    """Primary-provider payment intent as returned by the list endpoint."""
    return {
        "id": pi_id,
        "object": "payment_intent",
        "amount": 4900,
        "currency": "usd",
        "status": "succeeded",
        "created": created,
        "receipt_email": email,
        "customer": {"id": "cus_1", "email": "customer@example.com"},
    }


def _crm_contact(contact_id: str, date_added: str | None, email: str | None = None) -> dict[str, Any]:
    return {
        "id": contact_id,
        "email": email or f"{contact_id}@example.com",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "phone": "+15550100",
        "tags": ["lead"],
        "dateAdded": date_added,
    }


@pytest.fixture
def sample_datetime() -> datetime:
    """Sample datetime for testing."""
    return datetime(2024, 1, 18, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def json_response():
    """Factory for JSON httpx responses used by MockTransport handlers."""
    return _json_response


@pytest.fixture
def payment_intent():
    return _payment_intent


@pytest.fixture
def crm_contact():
    return _crm_contact
