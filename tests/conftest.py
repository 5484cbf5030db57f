"""
Test fixtures for the Payout Accounts API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - notifier: Recording notifier that captures every code "emailed"
  - client: Async HTTP test client (unauthenticated)
  - authenticated_client: Test client with a pre-registered user and JWT
  - second_user_headers: Authorization header for a second user
  - fetch_account / fetch_user_accounts: Direct row reads, bypassing the API
  - file_db_engine / concurrent_client: File-backed database and an
    authenticated client for tests that race requests against each other

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database — no state leaks between tests.
  - The in-memory engine shares ONE connection between all sessions, so it
    cannot exercise real concurrency. Racing tests use a file under
    tmp_path instead, where each session gets its own connection and
    SQLite's write lock actually arbitrates between them.
  - Both engines get the same BEGIN IMMEDIATE hook as the application.
  - We override FastAPI's get_db and get_notifier dependencies, so the
    application code works exactly as it does in production while the
    codes that would have been emailed are available to the test.
"""

import os

# Settings() requires a secret; set one before any app module is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.database import Base, enable_sqlite_write_locking, get_db
from app.dependencies import get_notifier
from app.main import app
from app.models.bank_account import BankAccount
from app.services.notifier import Notifier


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


class RecordingNotifier(Notifier):
    """Captures (email, code) pairs instead of sending email."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send(self, email: str, code: str) -> None:
        self.sent.append((email, code))

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


async def _create_engine(url: str, **kwargs):
    engine = create_async_engine(url, **kwargs)
    enable_sqlite_write_locking(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


def _session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def _get_db_override(engine):
    """A get_db replacement bound to the given engine."""
    async_session = _session_factory(engine)

    async def override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return override_get_db


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = await _create_engine(TEST_DATABASE_URL)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_db_engine(tmp_path):
    """
    A file-backed database, one connection per session.

    The busy timeout is generous so a request waiting on another's write
    lock blocks instead of failing.
    """
    engine = await _create_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"timeout": 30},
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Provide an async session bound to the test engine."""
    async with _session_factory(db_engine)() as session:
        yield session


@pytest_asyncio.fixture
async def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(db_engine, notifier):
    """
    Async HTTP test client with the test database and notifier injected.
    """
    app.dependency_overrides[get_db] = _get_db_override(db_engine)
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def signup(client, email: str, password: str = "SecurePass123!") -> dict:
    """Register a user and return the Authorization header for them."""
    response = await client.post(
        "/auth/signup",
        json={
            "email": email,
            "password": password,
            "first_name": "Test",
            "last_name": "User",
        },
    )
    assert response.status_code == 201, f"Signup failed: {response.text}"
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest_asyncio.fixture
async def authenticated_client(client):
    """
    Test client with a pre-registered user and JWT token.

    Signs up a test user via the real signup endpoint, then sets the
    Authorization header on the client for all subsequent requests.
    """
    headers = await signup(client, "testuser@example.com")
    client.headers.update(headers)
    return client


@pytest_asyncio.fixture
async def concurrent_client(file_db_engine, notifier):
    """Authenticated client on the file-backed database."""
    app.dependency_overrides[get_db] = _get_db_override(file_db_engine)
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        ac.headers.update(await signup(ac, "racer@example.com"))
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def second_user_headers(client):
    """Authorization header for a second user, for cross-user checks."""
    return await signup(client, "seconduser@example.com", "SecurePass456!")


def _account_readers(engine):
    async_session = _session_factory(engine)

    async def fetch_one(account_id) -> BankAccount | None:
        async with async_session() as session:
            result = await session.execute(
                select(BankAccount).where(BankAccount.id == account_id)
            )
            return result.scalar_one_or_none()

    async def fetch_all() -> list[BankAccount]:
        async with async_session() as session:
            result = await session.execute(select(BankAccount))
            return list(result.scalars().all())

    return fetch_one, fetch_all


@pytest_asyncio.fixture
async def fetch_account(db_engine):
    """
    Read a bank account row straight from the database.

    Bypasses the API so tests can assert on fields the API never exposes
    (verification_code, verification_code_expires_at).
    """
    return _account_readers(db_engine)[0]


@pytest_asyncio.fixture
async def fetch_user_accounts(db_engine):
    """All bank account rows in the database, for invariant checks."""
    return _account_readers(db_engine)[1]


@pytest_asyncio.fixture
async def fetch_file_accounts(file_db_engine):
    """All bank account rows in the file-backed database."""
    return _account_readers(file_db_engine)[1]
