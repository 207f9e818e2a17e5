"""Async database engine and session management.

One engine per process. Request handlers get a session through the
get_db_session dependency; background workers open their own sessions from
the same factory, one unit of work per job.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite connections are switched to explicit BEGIN IMMEDIATE transactions
    so that savepoints work and concurrent writers serialise on the database
    lock instead of failing.

    Args:
        database_url: SQLAlchemy async URL (postgresql+asyncpg://, sqlite+aiosqlite://).
        echo: Log emitted SQL.

    Returns:
        Configured AsyncEngine.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo)
        _use_explicit_sqlite_transactions(engine)
        return engine
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True, pool_recycle=280)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory that keeps attributes loaded after commit."""
    return async_sessionmaker(engine, expire_on_commit=False)


def init_database(database_url: str, echo: bool = False) -> async_sessionmaker[AsyncSession]:
    """Initialise the process-wide engine and session factory.

    Args:
        database_url: SQLAlchemy async URL.
        echo: Log emitted SQL.

    Returns:
        The process-wide session factory.
    """
    global _engine, _session_factory
    _engine = create_engine(database_url, echo=echo)
    _session_factory = create_session_factory(_engine)
    logger.info("Database initialised", dialect=_engine.dialect.name)
    return _session_factory


async def close_database() -> None:
    """Dispose of the process-wide engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory.

    Raises:
        RuntimeError: If init_database has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialised; call init_database() first.")
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session committed on success.

    Yields:
        AsyncSession bound to the process-wide engine.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _use_explicit_sqlite_transactions(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        # Disable the driver's implicit BEGIN so the "begin" hook controls it
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")
