"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory)
- Pipeline services wired to an in-memory job queue
- Webhook event factory
- HTTP client against the FastAPI app
"""
# in-process job queue for every test; set before the settings object is built
import os
os.environ.setdefault("JOB_QUEUE_BACKEND", "memory")

from datetime import datetime
from typing import Any, AsyncGenerator
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from webhook_pipeline.api.dependencies.pipeline import (
    get_handler_registry_dependency,
    get_job_queue_dependency,
)
from webhook_pipeline.core.config import settings
from webhook_pipeline.db.database import Base, get_db
from webhook_pipeline.db.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookProvider,
    utcnow,
)
from webhook_pipeline.domain.services.event_store import WebhookEventStore
from webhook_pipeline.domain.services.job_queue import InMemoryJobQueue
from webhook_pipeline.domain.services.providers.registry import (
    HandlerRegistry,
    build_default_registry,
)
from webhook_pipeline.domain.services.retry_policy import RetryPolicy
from webhook_pipeline.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ADMIN_API_KEY = "test-admin-key-for-testing-only"
ADMIN_HEADERS = {"X-Admin-API-Key": TEST_ADMIN_API_KEY}

DEFAULT_DELAYS_SECONDS = (60, 300, 1800, 3600, 14400)
DEFAULT_MAX_RETRIES = 5


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(db_session: AsyncSession) -> WebhookEventStore:
    return WebhookEventStore(db_session)


@pytest.fixture
def memory_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def registry() -> HandlerRegistry:
    """Fresh Stripe + Paystack registry, no callbacks registered"""
    return build_default_registry()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy.from_seconds(DEFAULT_DELAYS_SECONDS, DEFAULT_MAX_RETRIES)


@pytest.fixture
def make_event(db_session: AsyncSession):
    """
    Factory inserting a WebhookEvent in any state, bypassing the transition
    guard (tests need rows in states ingestion alone cannot produce).
    """
    counter = {"n": 0}

    async def _make(
        *,
        provider: WebhookProvider = WebhookProvider.STRIPE,
        event_id: str | None = None,
        event_type: str = "charge.succeeded",
        payload: dict[str, Any] | None = None,
        status: WebhookEventStatus = WebhookEventStatus.RECEIVED,
        retry_count: int = 0,
        error: str | None = None,
        created_at: datetime | None = None,
        processed_at: datetime | None = None,
        processing_started_at: datetime | None = None,
        with_payload: bool = True,
    ) -> WebhookEvent:
        counter["n"] += 1
        event_id = event_id or f"evt_test_{counter['n']}"
        if payload is None and with_payload:
            payload = {"id": event_id, "type": event_type}
        event = WebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=status,
            retry_count=retry_count,
            error=error,
            created_at=created_at or utcnow(),
            processed_at=processed_at,
            processing_started_at=processing_started_at,
        )
        db_session.add(event)
        await db_session.commit()
        return event

    return _make


@pytest.fixture
def admin_api_key():
    with patch.object(settings, "ADMIN_API_KEY", TEST_ADMIN_API_KEY):
        yield TEST_ADMIN_API_KEY


@pytest.fixture(scope="function")
async def test_client(
    db_session: AsyncSession,
    memory_queue: InMemoryJobQueue,
    registry: HandlerRegistry,
):
    """Create test client with database, queue and registry overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_queue_dependency] = lambda: memory_queue
    app.dependency_overrides[get_handler_registry_dependency] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
