"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - enable_sqlite_write_locking(): Starts SQLite transactions with
    BEGIN IMMEDIATE so concurrent writers are serialized from their first read
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request
  - persistence_guard(): Bounds a transactional unit of work in time and
    turns timeouts and lock contention into TransientPersistenceError

Architecture note:
  We use async SQLAlchemy (with aiosqlite for SQLite) so the API can handle
  concurrent requests without blocking. When migrating to PostgreSQL, only
  the DATABASE_URL needs to change (to use asyncpg driver).

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits
  on success and rolls back on any exception. Mutating bank-account
  operations commit explicitly inside persistence_guard() so that side
  effects such as sending the verification email happen strictly after the
  data they depend on is durable.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.exceptions import BankAPIError, TransientPersistenceError


logger = logging.getLogger(__name__)


def enable_sqlite_write_locking(async_engine: AsyncEngine) -> None:
    """
    Make every SQLite transaction take the database write lock up front.

    The sqlite3/aiosqlite drivers only emit BEGIN right before the first
    write, so the locking SELECTs of a unit of work would run outside any
    transaction and act on a stale snapshot. Disabling the driver's own
    BEGIN and issuing BEGIN IMMEDIATE when SQLAlchemy starts a transaction
    serializes writers from their first read. A second writer waits (up to
    the driver's busy timeout) and then sees the first one's committed rows.

    No-op for other dialects, where SELECT ... FOR UPDATE does the work.
    """
    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# Create the async engine.
# echo=True in debug mode logs all SQL statements — invaluable for development.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)
enable_sqlite_write_locking(engine)

# Session factory: creates new AsyncSession instances.
# expire_on_commit=False prevents lazy-load errors after commit —
# without this, accessing attributes on a committed object would trigger
# a synchronous DB call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models inherit from this class, which provides:
      - Metadata tracking for table creation and migrations
      - Common declarative mapping features
    """
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...

    The session is committed on success and rolled back on any exception,
    then closed when the request completes. Nothing from a failed request
    is persisted — a half-applied verification must never be observable.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# PostgreSQL SQLSTATEs that mean "someone else holds what you need, try again":
# serialization_failure, deadlock_detected, lock_not_available, query_canceled
_RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03", "57014"}


def _is_contention(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in _RETRYABLE_SQLSTATES


@asynccontextmanager
async def persistence_guard(db: AsyncSession, timeout: float | None = None):
    """
    Run a transactional unit of work with a bounded timeout.

    Usage:
        async with persistence_guard(db):
            ...read, lock, write...
            await db.commit()

    On any failure the session is rolled back before the exception leaves
    the block. Timeouts, operational errors (e.g. SQLite "database is
    locked"), lock/serialization contention, and integrity violations
    caused by a concurrent writer are re-raised as
    TransientPersistenceError; domain errors pass through unchanged.

    Args:
        db: The request's database session.
        timeout: Seconds allowed for the block. Defaults to
                 DB_OPERATION_TIMEOUT_SECONDS.
    """
    limit = timeout if timeout is not None else settings.DB_OPERATION_TIMEOUT_SECONDS
    try:
        async with asyncio.timeout(limit):
            yield
    except BankAPIError:
        await db.rollback()
        raise
    except TimeoutError as exc:
        await db.rollback()
        logger.warning("Database operation exceeded %.1fs, rolled back", limit)
        raise TransientPersistenceError(
            "The database did not respond in time, please retry"
        ) from exc
    except (OperationalError, IntegrityError) as exc:
        # IntegrityError here means a concurrent writer won a race against a
        # uniqueness/primary constraint; a retry re-reads the committed state.
        await db.rollback()
        logger.warning("Database contention, rolled back: %s", exc.orig)
        raise TransientPersistenceError() from exc
    except DBAPIError as exc:
        await db.rollback()
        if _is_contention(exc):
            logger.warning("Lock or serialization conflict, rolled back: %s", exc.orig)
            raise TransientPersistenceError() from exc
        raise
    except Exception:
        await db.rollback()
        raise
