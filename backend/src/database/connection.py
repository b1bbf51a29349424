"""
Database connection management with the SQLAlchemy async engine.

Provides the global engine and session factory, a transactional session
context manager, the FastAPI session dependency and health checks.

PostgreSQL provides the row locks the order engine relies on. SQLite
ignores ``FOR UPDATE``, so on SQLite every transaction is opened with
``BEGIN IMMEDIATE`` which takes the database write lock up front and
serializes concurrent writers instead.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def enable_sqlite_write_locking(engine: AsyncEngine) -> None:
    """
    Make SQLite transactions take the write lock when they begin.

    pysqlite's implicit transaction handling is switched off so the
    ``begin`` listener controls the BEGIN statement itself.
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    Args:
        database_url: Override for the configured URL

    Returns:
        Configured async SQLAlchemy engine
    """
    settings = get_settings()
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=settings.db_echo,
            connect_args={"timeout": 30},
        )
        enable_sqlite_write_locking(engine)
    else:
        engine = create_async_engine(
            url,
            echo=settings.db_echo,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args={
                "server_settings": {"application_name": settings.app_name},
                "command_timeout": 60,
                "timeout": 10,
            },
        )

    logger.info(
        "Database engine created",
        dialect=engine.dialect.name,
        environment=settings.environment,
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``; objects stay usable after commit."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """
    Get or create the global async database engine.

    Raises:
        RuntimeError: If engine initialization fails
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except (SQLAlchemyError, ValueError) as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session that commits on success and rolls back on error.

    Services commit their own units of work; the final commit here only
    flushes anything a caller left pending.
    """
    session = get_session_factory()()

    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.warning(
            "Database session rolled back",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await session.close()


@asynccontextmanager
async def read_transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a read-only unit of work and end its transaction on exit.

    On SQLite the transaction holds the database write lock from its
    ``BEGIN IMMEDIATE``, so reads must not leave it open. Ending with a
    commit keeps loaded objects usable (``expire_on_commit=False``); a
    database error rolls back instead.

    Only use at the outermost level of a service call: it also ends any
    transaction the caller already had open.
    """
    try:
        yield session
    except SQLAlchemyError:
        await session.rollback()
        raise
    finally:
        if session.in_transaction():
            await session.commit()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database session injection.

    Example:
        @router.get("/products")
        async def list_products(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session() as session:
        yield session


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connectivity with exponential backoff.

    Args:
        max_retries: Maximum number of connection attempts
        retry_delay: Base delay between attempts in seconds

    Returns:
        True if a ``SELECT 1`` succeeded
    """
    for attempt in range(max_retries):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
            if attempt < max_retries - 1:
                await asyncio.sleep(retry_delay * (2**attempt))

    logger.error("Database health check failed after all retries", max_retries=max_retries)
    return False


async def create_schema(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables from model metadata.

    Used for local SQLite databases and tests; PostgreSQL deployments use
    the alembic migrations.
    """
    from src.database.models import Base

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def initialize_database() -> None:
    """
    Initialize the engine and verify connectivity at startup.

    Raises:
        RuntimeError: If the database is unreachable
    """
    settings = get_settings()
    get_session_factory()

    if settings.is_sqlite:
        await create_schema()

    if not await check_database_health(max_retries=5, retry_delay=2.0):
        raise RuntimeError("Database health check failed during initialization")

    logger.info("Database initialized")


async def close_database_connections() -> None:
    """Dispose of the engine during application shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        finally:
            _engine = None
            _session_factory = None
