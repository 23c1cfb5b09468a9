"""Pytest configuration and fixtures for backend tests.

Database Handling:
- Uses TEST_DATABASE_URL when set (e.g. a PostgreSQL test database)
- Otherwise uses a per-test SQLite file through aiosqlite
Tables are created from the model metadata for every test and dropped after.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./schoolgate_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-that-is-long-enough-0123")
os.environ.setdefault("CSRF_COOKIE_SECURE", "false")

# Meets the default password policy: no runs, all four classes
TEST_PASSWORD = "Kx9!mQ2#vLp7"
TEST_JWT_SECRET = "test-jwt-secret-key-that-is-long-enough-0123"


class FakeClock:
    """Injectable clock that only moves when told to.

    Starts at the real current time: PyJWT checks ``exp``/``iat`` against
    the wall clock, so tokens issued at a fake time far from now would not
    verify.
    """

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# --- Clock and policy ---


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def security_policy():
    """Default policy with a fixed signing key.

    Test modules override this fixture to try alternate policies.
    """
    from schoolgate.core.policy import SecurityPolicy, TokenPolicy

    return SecurityPolicy(tokens=TokenPolicy(secret_key=TEST_JWT_SECRET))


# --- Database Fixtures ---


def _get_database_url(tmp_path) -> str:
    explicit_url = os.environ.get("TEST_DATABASE_URL")
    if explicit_url:
        return explicit_url
    return f"sqlite+aiosqlite:///{tmp_path / 'schoolgate.db'}"


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a database engine with all tables for one test."""
    from schoolgate.core.database import Base
    from schoolgate.models import AuditLog, AuditLogArchive, RevokedToken, User  # noqa: F401

    engine = create_async_engine(_get_database_url(tmp_path), poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# --- Audit ---


@pytest_asyncio.fixture
async def audit_trail(session_factory, clock):
    """Audit writer that only flushes when a test asks it to."""
    from schoolgate.services.audit_trail import AuditTrail

    trail = AuditTrail(session_factory=session_factory, clock=clock, batch_interval_ms=3_600_000)
    yield trail
    await trail.close()


@pytest.fixture
def audit_service(audit_trail):
    from schoolgate.services.audit import AuditService

    return AuditService(audit_trail)


@pytest.fixture
def mock_audit():
    """AuditService double recording every call."""
    from unittest.mock import AsyncMock

    from schoolgate.services.audit import AuditService

    return AsyncMock(spec=AuditService)


@pytest.fixture
def audit_entries(audit_trail, session_factory):
    """Flush the trail and return persisted entries, oldest first."""
    from sqlalchemy import select

    from schoolgate.models import AuditLog

    async def _entries(action_type: str | None = None) -> list[AuditLog]:
        await audit_trail.flush()
        async with session_factory() as session:
            query = select(AuditLog).order_by(AuditLog.created_at)
            if action_type is not None:
                query = query.where(AuditLog.action_type == action_type)
            result = await session.execute(query)
            return list(result.scalars().all())

    return _entries


# --- Application ---


@pytest.fixture
def rate_limiter(clock):
    from schoolgate.middleware.rate_limit import RateLimiter

    return RateLimiter(clock)


@pytest.fixture
def app(security_policy, session_factory, audit_trail, rate_limiter, clock):
    from schoolgate.main import create_app

    return create_app(
        policy=security_policy,
        session_factory=session_factory,
        audit_trail=audit_trail,
        rate_limiter=rate_limiter,
        clock=clock,
        start_background_tasks=False,
    )


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client bound to the per-test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# --- Identities ---


@pytest.fixture
def user_factory(db_session):
    """Factory for creating test identities."""
    from schoolgate.models import User
    from schoolgate.services.auth import hash_password

    async def _create_user(
        email: str = "user@example.com",
        password: str = TEST_PASSWORD,
        role: str = "teacher",
        **fields: Any,
    ) -> User:
        user = User(
            email=email,
            name=fields.pop("name", email.split("@")[0]),
            password_hash=hash_password(password),
            role=role,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest_asyncio.fixture
async def admin_user(user_factory):
    return await user_factory(email="admin@example.com", role="admin")


@pytest_asyncio.fixture
async def superadmin_user(user_factory):
    return await user_factory(email="root@example.com", role="superadmin")


@pytest_asyncio.fixture
async def teacher_user(user_factory):
    return await user_factory(email="teacher@example.com", role="teacher")


@pytest.fixture
def token_for(security_policy, clock):
    """Issue an access token for a user under the test policy."""
    from schoolgate.services.auth import create_access_token

    def _token(user) -> str:
        return create_access_token(user, security_policy.tokens, clock)

    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(user) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers


@pytest.fixture
def csrf_headers(async_client, security_policy):
    """Set a CSRF cookie on the client and return the matching header."""
    from schoolgate.services.csrf import generate_csrf_token

    def _headers() -> dict[str, str]:
        token = generate_csrf_token()
        async_client.cookies.set(security_policy.csrf.cookie_name, token)
        return {security_policy.csrf.header_name: token}

    return _headers


@pytest.fixture
def admin_headers(admin_user, auth_headers, csrf_headers) -> dict[str, str]:
    """Bearer + CSRF headers for the admin user."""
    return {**auth_headers(admin_user), **csrf_headers()}


# --- Pytest Hooks for Auto-Marking ---


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their fixtures.

    - Tests using db_session, db_engine, or async_client are marked as 'integration'
    - Everything else is marked as 'unit'
    - Tests can override with explicit markers
    """
    integration_fixtures = {"db_session", "db_engine", "session_factory", "async_client"}

    for item in items:
        if any(mark.name in ("unit", "integration") for mark in item.iter_markers()):
            continue

        if hasattr(item, "fixturenames") and integration_fixtures & set(item.fixturenames):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
