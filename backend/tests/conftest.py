"""Shared test fixtures."""

import os
import tempfile
import uuid
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Ensure mock auth and a throwaway database before the app is imported
_DB_DIR = tempfile.mkdtemp(prefix="planshare-tests-")
os.environ.setdefault("AUTH_MOCK", "true")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/planshare.db")

import planshare.models  # noqa: E402,F401
from planshare.core.security import create_mock_access_token  # noqa: E402
from planshare.db.base import Base  # noqa: E402
from planshare.db.session import async_session_factory  # noqa: E402
from planshare.db.session import engine as app_engine  # noqa: E402
from planshare.main import app  # noqa: E402
from planshare.models.user import User  # noqa: E402


@pytest.fixture(autouse=True)
async def schema() -> AsyncGenerator[None, None]:
    """Fresh tables for every test; the app's pool is disposed afterwards."""
    async with app_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with app_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await app_engine.dispose()


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Async DB session on the app engine. Commit explicitly to publish changes."""
    async with async_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client for the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def make_token(sub: str = "test-sub", email: str = "test@example.com") -> str:
    """Generate a mock JWT for testing."""
    return create_mock_access_token(sub=sub, email=email)


def auth_headers(sub: str = "test-sub", email: str = "test@example.com") -> dict:
    """Return Authorization headers with a mock JWT."""
    token = make_token(sub=sub, email=email)
    return {"Authorization": f"Bearer {token}"}


async def make_user(db: AsyncSession, name: str = "user") -> User:
    uid = uuid.uuid4().hex[:8]
    user = User(
        subject=f"{name}-{uid}",
        email=f"{name}-{uid}@example.com",
        full_name=name.title(),
    )
    db.add(user)
    await db.flush()
    return user


@pytest.fixture
async def owner(db: AsyncSession) -> User:
    user = await make_user(db, "owner")
    await db.commit()
    return user


@pytest.fixture
async def editor(db: AsyncSession) -> User:
    user = await make_user(db, "editor")
    await db.commit()
    return user


@pytest.fixture
async def viewer(db: AsyncSession) -> User:
    user = await make_user(db, "viewer")
    await db.commit()
    return user


@pytest.fixture
async def outsider(db: AsyncSession) -> User:
    user = await make_user(db, "outsider")
    await db.commit()
    return user
