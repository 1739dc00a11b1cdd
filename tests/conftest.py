"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any app import)
- FrozenClock, injected through the ``get_clock`` dependency
- An in-memory SQLite database (aiosqlite, StaticPool) with the schema created
- User factory and bearer-token helper
- An httpx ``AsyncClient`` bound to the ASGI app with dependency overrides
"""

from __future__ import annotations

import os

# Environment defaults; must be set before importing the app, which triggers
# pydantic Settings validation on import.
os.environ.setdefault("SECRET_KEY", "test-secret-key-boot")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_NAME", "TwoFactor")

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from twofactor.core import crypto
from twofactor.core.clock import get_clock
from twofactor.core.limiter import limiter
from twofactor.core.security import create_access_token, get_password_hash
from twofactor.db.base import Base
from twofactor.db.session import get_db
from twofactor.main import app
from twofactor.models import User
from twofactor.services import totp

PASSWORD = "Password123!"
PASSWORD_HASH = get_password_hash(PASSWORD)
KNOWN_SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
START = datetime(2025, 9, 5, 14, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when a test tells it to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: Any) -> datetime:
        self.current += timedelta(**delta)
        return self.current


def wrong_code(secret: str, when: datetime) -> str:
    """A well-formed code that is not valid for ``when`` or its neighbouring steps."""
    valid = {totp.code_at(secret, when + timedelta(seconds=30 * step)) for step in (-1, 0, 1)}
    for candidate in ("000000", "111111", "222222", "333333"):
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


async def create_user(
    db,
    *,
    email: str = "user@example.com",
    secret: str | None = None,
    recovery_codes: list[str] | None = None,
    confirmed_at: datetime | None = None,
    **overrides: Any,
) -> User:
    defaults: dict[str, Any] = dict(
        email=email,
        name="Test User",
        hashed_password=PASSWORD_HASH,
        is_active=True,
        token_version=0,
        two_factor_secret=crypto.encrypt(secret) if secret else None,
        two_factor_recovery_codes=(
            crypto.encrypt_codes(recovery_codes) if recovery_codes is not None else None
        ),
        two_factor_confirmed_at=confirmed_at,
    )
    defaults.update(overrides)
    user = User(**defaults)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(str(user.id), token_version=user.token_version)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Shared pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest_asyncio.fixture
async def user(db) -> User:
    return await create_user(db)


@pytest_asyncio.fixture
async def client(session_factory, clock):
    """ASGI client with per-request sessions on the test database and the frozen clock."""

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    limiter.enabled = False

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client

    limiter.enabled = True
    app.dependency_overrides.clear()
