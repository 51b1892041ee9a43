"""Shared test fixtures — async SQLite in-memory DB + test client."""

import os
import uuid
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

# Import all models so metadata is populated
import app.models  # noqa: F401
from app.api.deps import get_rate_limiter
from app.core.cache import usage_summaries
from app.core.database import get_session, get_session_factory
from app.core.security import create_jwt
from app.main import app
from app.services.rate_limit import InMemoryCounterStore, RateLimiter


@pytest.fixture
async def engine():
    # One shared connection so detached chat turns see the request's writes
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(InMemoryCounterStore(), limit=10, window_seconds=60)


@pytest.fixture
async def client(test_session_factory, rate_limiter) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session, factory and limiter overrides."""

    async def _override_session():
        async with test_session_factory() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    usage_summaries.clear()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    usage_summaries.clear()


@pytest.fixture
def account_id() -> uuid.UUID:
    return uuid.uuid4()


def auth_headers(account_id: uuid.UUID) -> dict:
    return {"Authorization": f"Bearer {create_jwt(str(account_id))}"}


@pytest.fixture
def headers(account_id) -> dict:
    return auth_headers(account_id)
