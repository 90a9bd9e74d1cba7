"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- Two seeded tenants with applications, versions and ordered environments
- A frozen clock and an httpx MockTransport webhook receiver
- An API client authenticated per tenant
"""
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only")

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator

import httpx
import pytest
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from releasehub.clock import FrozenClock
from releasehub.database import get_db
from releasehub.models.base import Base
from releasehub.models.tenant import Tenant
from releasehub.models.application import Application, Version, VersionStatus
from releasehub.models.environment import Environment
from releasehub.models.deployment import Deployment, DeploymentEvent  # noqa: F401
from releasehub.models.webhook import Webhook, WebhookEvent  # noqa: F401
from releasehub.services.deployment_service import DeploymentLifecycleService
from releasehub.services.jwt_service import JWTService
from releasehub.services.webhook_service import WebhookDeliveryService
from releasehub.tenancy import TenantContext


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


@dataclass
class TenantSeed:
    tenant_id: str
    application_id: int
    other_application_id: int
    version_id: int
    other_version_id: int
    dev_id: int
    staging_id: int
    prod_id: int


class RecordingDispatcher:
    """Keeps dispatched tasks instead of running them."""

    def __init__(self):
        self.tasks = []

    async def dispatch(self, task):
        self.tasks.append(task)

    @property
    def event_types(self) -> list[str]:
        return [t.payload["event_type"] for t in self.tasks]


class FailingDispatcher:
    async def dispatch(self, task):
        raise ConnectionError("queue unavailable")


class WebhookReceiver:
    """
    Scripted webhook endpoint for httpx.MockTransport.

    Queue outcomes with respond(); status codes are returned as responses,
    exceptions are raised as transport errors. Defaults to 200.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.outcomes: list = []

    def respond(self, *outcomes):
        self.outcomes.extend(outcomes)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else 200
        if isinstance(outcome, Exception):
            raise outcome
        body = "ok" if outcome < 300 else "receiver exploded " + "x" * 2000
        return httpx.Response(outcome, text=body)


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
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
async def http_client(receiver) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(receiver.handler)) as client:
        yield client


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


async def seed_tenant(session: AsyncSession, tenant_id: str) -> TenantSeed:
    """One tenant with two applications and dev/staging/prod environments."""
    session.add(Tenant(id=tenant_id, name=tenant_id.title(), code=tenant_id))
    await session.flush()

    app = Application(tenant_id=tenant_id, name="billing")
    other_app = Application(tenant_id=tenant_id, name="search")
    session.add_all([app, other_app])
    await session.flush()

    version = Version(
        tenant_id=tenant_id,
        application_id=app.id,
        version_number="1.4.0",
        status=VersionStatus.RELEASED,
    )
    other_version = Version(tenant_id=tenant_id, application_id=other_app.id, version_number="0.9.0")
    dev = Environment(tenant_id=tenant_id, name="dev", order=1)
    staging = Environment(tenant_id=tenant_id, name="staging", order=2)
    prod = Environment(tenant_id=tenant_id, name="prod", order=3)
    session.add_all([version, other_version, dev, staging, prod])
    await session.commit()

    return TenantSeed(
        tenant_id=tenant_id,
        application_id=app.id,
        other_application_id=other_app.id,
        version_id=version.id,
        other_version_id=other_version.id,
        dev_id=dev.id,
        staging_id=staging.id,
        prod_id=prod.id,
    )


@pytest.fixture
async def tenant_a(db_session) -> TenantSeed:
    return await seed_tenant(db_session, TENANT_A)


@pytest.fixture
async def tenant_b(db_session) -> TenantSeed:
    return await seed_tenant(db_session, TENANT_B)


@pytest.fixture
def context_a() -> TenantContext:
    return TenantContext(tenant_id=TENANT_A, user_id="alice")


@pytest.fixture
def context_b() -> TenantContext:
    return TenantContext(tenant_id=TENANT_B, user_id="bob")


@pytest.fixture
def lifecycle(db_session, context_a, dispatcher, clock, tenant_a) -> DeploymentLifecycleService:
    return DeploymentLifecycleService(db_session, context_a, dispatcher, clock)


@pytest.fixture
def webhooks(db_session, context_a, clock, http_client, tenant_a) -> WebhookDeliveryService:
    return WebhookDeliveryService(db_session, context_a, clock=clock, http_client=http_client)


def token_for(user_id: str, tenant_id: str, role: str = "member") -> str:
    return JWTService().create_token(user_id, tenant_id, role)


def auth_headers(user_id: str = "alice", tenant_id: str = TENANT_A, role: str = "member") -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user_id, tenant_id, role)}"}


@pytest.fixture(scope="function")
async def test_client(db_session, clock, dispatcher, http_client):
    """Create test client with database, clock and dispatcher overrides"""
    from httpx import AsyncClient, ASGITransport
    from releasehub.dependencies.services import get_clock, get_webhook_dispatcher, get_webhook_service
    from releasehub.dependencies.auth import get_tenant_context
    from releasehub.main import app

    async def override_get_db():
        yield db_session

    def override_get_webhook_service(context=Depends(get_tenant_context)):
        return WebhookDeliveryService(db_session, context, clock=clock, http_client=http_client)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_webhook_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_webhook_service] = override_get_webhook_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
