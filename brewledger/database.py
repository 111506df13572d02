"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits
  on success and rolls back on ANY exception, including business-rule
  rejections such as InsufficientBalanceError. A rejected debit or a
  rejected redemption therefore never leaves a partial write behind.

SQLite write serialization:
  pysqlite/aiosqlite defer BEGIN until the first DML statement, which lets
  two sessions both read a balance before either writes it. We disable the
  driver's implicit transaction handling and emit BEGIN IMMEDIATE ourselves
  (the recipe from the SQLAlchemy aiosqlite docs), so every transaction
  takes the database write lock up front and concurrent writers queue on
  it. On PostgreSQL the conditional UPDATE in the ledger and the
  with_for_update() row locks do the same job.
"""

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from brewledger.config import settings


def configure_sqlite_transactions(async_engine: AsyncEngine) -> None:
    """
    Make every transaction on a SQLite engine start with BEGIN IMMEDIATE.

    No-op for other backends.
    """
    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        # Stop the driver from emitting its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _ensure_sqlite_directory(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_directory(settings.DATABASE_URL)

# echo=True in debug mode logs all SQL statements
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)
configure_sqlite_transactions(engine)

# expire_on_commit=False prevents lazy-load errors after commit:
# without this, accessing attributes on a committed object would trigger
# a synchronous DB call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...

    The session is committed on success and rolled back on any exception,
    then closed when the request completes.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
