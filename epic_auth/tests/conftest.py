"""
This module contains fixtures and test utilities for the application.

It includes fixtures providing an in-memory database, a session on it, an
async client for the FastAPI app bound to that database, and helpers to
create users and log them in.
"""
from unittest.mock import AsyncMock, patch
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from epic_auth.main import app
from epic_auth.core.db import get_async_db
from epic_auth.core.utils import generate_uuid
from epic_auth.db_objects import db_models  # noqa: F401  pylint: disable=unused-import
from epic_auth.db_objects._base import Base
from epic_auth.db_objects.user import create_user
from epic_auth.templates.schemas.user import UserCreate

pytest_plugins = ('pytest_asyncio',)


@pytest_asyncio.fixture
async def db_engine():
    """An in-memory database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_engine):
    """A session on the in-memory database."""
    sessionmaker = async_sessionmaker(db_engine, expire_on_commit=False)
    async with sessionmaker() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_engine):
    """
    An async client for the FastAPI app, using the in-memory database.

    Every client gets its own address so the rate limits of the code
    submission routes are not shared between tests.
    """
    sessionmaker = async_sessionmaker(db_engine, expire_on_commit=False)

    async def _get_test_db():
        async with sessionmaker() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db
    transport = ASGITransport(app=app, client=(generate_uuid(), 123))
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sent_emails():
    """
    Captures the verification emails instead of sending them.

    Yields the mock, its calls hold the recipient, the code and the link.
    """
    mock_send = AsyncMock(return_value=True)
    with patch("epic_auth.api.routes.auth.send_verification_email", mock_send), \
            patch("epic_auth.api.routes.change_email.send_verification_email", mock_send):
        yield mock_send


@pytest_asyncio.fixture
async def user(db):
    """A registered user with a verified email."""
    db_user = await create_user(db, UserCreate(
        username="kody",
        email="kody@example.com",
        name="Kody",
        password="kodylovesyou",
    ))
    db_user.email_verified = True
    await db.commit()
    return db_user


@pytest_asyncio.fixture
async def auth_headers(client, user):
    """The Authorization header of the user, logged in without 2FA."""
    response = await client.post("/api/auth/login", data={
        "username": user.username,
        "password": "kodylovesyou",
    })
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
