"""Integration test fixtures for database and HTTP client operations.

Each test gets its own SQLite database file, so sessions opened by the
request, the audit log and background tasks see each other's commits the
way they would on PostgreSQL.
Uses polyfactory for type-safe test data generation.
"""

import base64
from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from src.onboarding import models  # noqa: F401 - registers tables on the metadata
from src.onboarding.api.dependencies import get_crm_sync, get_db_session, get_session_scope
from src.onboarding.core.background import BackgroundRunner, get_background_runner
from src.onboarding.core.config import get_settings
from src.onboarding.core.notifications.email import EmailDispatcher, get_email_dispatcher
from src.onboarding.core.rate_limit import InMemoryRateLimiter, get_rate_limiter
from src.onboarding.crm import CrmSync
from src.onboarding.main import create_app
from src.onboarding.repositories import (
    AgentPageRepository,
    AuditLogRepository,
    InvitationRepository,
    UserRepository,
)
from src.onboarding.services import AuditService, InvitationStore

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create a per-test SQLite database with all tables."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'onboarding.db'}", poolclass=NullPool
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def session_scope(session_factory: async_sessionmaker[AsyncSession]) -> SessionScope:
    """Same contract as core.db.get_session, bound to the test database."""

    @asynccontextmanager
    async def _scope() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            yield session

    return _scope


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Provide an async session for arranging and inspecting data.

    The session never auto-commits; tests commit explicitly.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> InvitationStore:
    return InvitationStore(
        UserRepository(db_session),
        InvitationRepository(db_session),
        AgentPageRepository(db_session),
        db_session,
    )


@pytest.fixture
async def audit_service(session_scope: SessionScope) -> AsyncGenerator[AuditService]:
    async with session_scope() as session:
        yield AuditService(AuditLogRepository(session), session)


@pytest.fixture
def runner() -> BackgroundRunner:
    return BackgroundRunner(max_workers=4, timeout=5.0)


@pytest.fixture
def rate_limiter() -> InMemoryRateLimiter:
    """Generous by default; tests tighten ``limit`` to exercise 429s."""
    return InMemoryRateLimiter(limit=1000, window_seconds=60)


@pytest.fixture
def crm_sync() -> CrmSync:
    """CRM disabled unless a test swaps in a client."""
    return CrmSync(None)


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    session_scope: SessionScope,
    email_dispatcher: EmailDispatcher,
    runner: BackgroundRunner,
    rate_limiter: InMemoryRateLimiter,
    crm_sync: CrmSync,
):
    application = create_app()

    async def _db_session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db_session] = _db_session
    application.dependency_overrides[get_session_scope] = lambda: session_scope
    application.dependency_overrides[get_email_dispatcher] = lambda: email_dispatcher
    application.dependency_overrides[get_background_runner] = lambda: runner
    application.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    application.dependency_overrides[get_crm_sync] = lambda: crm_sync
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    settings = get_settings()
    credentials = f"{settings.admin_username}:{settings.admin_password}".encode()
    return {"Authorization": f"Basic {base64.b64encode(credentials).decode()}"}
