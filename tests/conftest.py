"""Shared test fixtures."""

from __future__ import annotations

import os

# Settings are read at import time by mindcase.main
os.environ["MINDCASE_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["MINDCASE_JWT_SECRET"] = "test-signing-secret-0123456789abcdef-mindcase"
os.environ.setdefault("MINDCASE_LOG_FORMAT", "console")

from collections.abc import AsyncGenerator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import BigInteger  # noqa: E402
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402

from mindcase.auth.service import create_guest_user, register_user  # noqa: E402
from mindcase.auth.tokens import issue_token_pair  # noqa: E402
from mindcase.config import get_settings  # noqa: E402
from mindcase.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from mindcase.db.base import Base  # noqa: E402
from mindcase.db.models import User  # noqa: E402
from mindcase.main import create_app  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_PASSWORD = "correct-horse-battery"


# --- SQLite renderings of the PostgreSQL column types ---


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(_type: Any, _compiler: Any, **_kw: Any) -> str:  # noqa: ANN401
    return "TEXT"


@compiles(INET, "sqlite")
def _compile_inet_sqlite(_type: Any, _compiler: Any, **_kw: Any) -> str:  # noqa: ANN401
    return "TEXT"


@compiles(UUID, "sqlite")
def _compile_uuid_sqlite(_type: Any, _compiler: Any, **_kw: Any) -> str:  # noqa: ANN401
    # CHAR keeps TEXT affinity, so all-digit hex ids are not coerced to numbers
    return "CHAR(36)"


@compiles(BigInteger, "sqlite")
def _compile_bigint_sqlite(_type: Any, _compiler: Any, **_kw: Any) -> str:  # noqa: ANN401
    # INTEGER PRIMARY KEY is the rowid alias SQLite autoincrements
    return "INTEGER"


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Any:  # noqa: ANN401
    """Tests that patch MINDCASE_* env vars must not leak cached settings."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory schema per test."""
    await init_db(TEST_DATABASE_URL)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for service calls and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database: None) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to a fresh app.

    ASGITransport does not run the lifespan, so Redis stays uninitialised and
    the rate limiter lets every request through unless a test patches it.
    """
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# --- Users ---


async def make_user(db: AsyncSession, email: str = "sherlock@example.com") -> User:
    user = await register_user(db, email, TEST_PASSWORD, "Sherlock")
    await db.commit()
    return user


async def make_guest(db: AsyncSession) -> User:
    user = await create_guest_user(db)
    await db.commit()
    return user


def auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    return await make_user(db_session)


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await make_user(db_session, "moriarty@example.com")


@pytest_asyncio.fixture
async def user_headers(db_session: AsyncSession, user: User) -> dict[str, str]:
    pair = await issue_token_pair(db_session, user)
    await db_session.commit()
    return auth_headers(pair.access_token)


@pytest_asyncio.fixture
async def registered(client: AsyncClient) -> dict[str, Any]:
    """A user registered through the API: ``{"email", "password", "body"}``."""
    response = await client.post(
        "/api/auth/register",
        json={"email": "watson@example.com", "password": TEST_PASSWORD, "name": "Watson"},
    )
    assert response.status_code == 201, response.text
    return {"email": "watson@example.com", "password": TEST_PASSWORD, "body": response.json()}


@pytest_asyncio.fixture
async def registered_headers(registered: dict[str, Any]) -> dict[str, str]:
    return auth_headers(registered["body"]["accessToken"])
