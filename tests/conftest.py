"""Pytest configuration and fixtures for tokenvault tests.

Database Handling:
- Every test gets a fresh in-memory SQLite database (aiosqlite) with the
  full schema created from the models.
- The application engine is pointed at SQLite too, so importing the app
  never needs PostgreSQL.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Test account credentials
TEST_IDENTIFIER = "alice"
TEST_PASSWORD = "correct-horse-battery"

# Whole seconds, so iat/exp round-trip exactly
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# --- State Reset Fixtures ---


def _reset_module_state():
    """Clear process-wide caches between tests.

    Parsed key objects are cached by kid, and failed login attempts are
    tracked per client IP in a module-level dict.
    """
    from tokenvault.api.auth import reset_login_attempts
    from tokenvault.services.keys import clear_key_cache

    clear_key_cache()
    reset_login_attempts()


@pytest.fixture(autouse=True)
def reset_state(request):
    """Reset caches and the login rate limiter around each test.

    Tests marked with pytest.mark.skip_rate_limiter_reset skip this.
    """
    if request.node.get_closest_marker("skip_rate_limiter_reset"):
        yield
        return

    _reset_module_state()
    yield
    _reset_module_state()


# --- Clock / Settings ---


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings():
    """Settings with the documented defaults, independent of the environment."""
    from tokenvault.core.config import Settings

    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        access_token_expire_minutes=15,
        refresh_token_expire_days=7,
        key_pair_lifetime_hours=2,
        clock_tolerance_seconds=60,
        refresh_token_rotation=False,
    )


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create an in-memory SQLite engine with all tables."""
    from tokenvault.core.database import Base
    from tokenvault.models import Account, KeyPair, RefreshToken, TokenBlacklist  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# --- Service Fixtures ---


@pytest.fixture
def auth_service(db_session, settings, clock):
    from tokenvault.services.auth import AuthService

    return AuthService(db_session, settings=settings, clock=clock)


@pytest.fixture
def account_factory(db_session):
    """Factory for creating test accounts."""
    from tokenvault.services.accounts import AccountService

    async def _create_account(
        identifier: str = TEST_IDENTIFIER,
        password: str = TEST_PASSWORD,
        display_name: str | None = "Alice",
    ):
        return await AccountService(db_session).create_account(
            identifier, password, display_name
        )

    return _create_account


@pytest.fixture
def deactivate_account(db_session):
    """Mark an account inactive so it no longer resolves to a subject."""
    from sqlalchemy import update

    from tokenvault.models import Account

    async def _deactivate(identifier: str = TEST_IDENTIFIER) -> None:
        await db_session.execute(
            update(Account).where(Account.identifier == identifier).values(is_active=False)
        )
        await db_session.commit()

    return _deactivate


# --- HTTP Client ---


@pytest_asyncio.fixture(scope="function")
async def async_client(
    db_session: AsyncSession, settings, clock
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database, settings and clock overrides."""
    from tokenvault.api.auth import get_clock
    from tokenvault.core.config import get_settings
    from tokenvault.core.database import get_db
    from tokenvault.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def bearer():
    """Build an Authorization header for an access token."""

    def _bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    return _bearer
