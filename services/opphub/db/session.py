"""
Database session management for the opphub API server.

Provides async SQLAlchemy session factory for database access and the
translation of driver failures into StoreError.
"""

from collections.abc import AsyncGenerator, Iterator
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from opphub.config import settings
from opphub.errors import StoreError
from opphub.logging_config import get_logger

logger = get_logger(__name__)

# Primary engine — created lazily in init_db()
_engine = None
_async_session_factory = None


async def init_db(database_url: str | None = None) -> None:
    """Initialize database connection pool.

    Uses settings.database_url unless an explicit URL is given (the CLI
    passes its own).
    """
    global _engine, _async_session_factory  # noqa: PLW0603
    logger.info("Initializing database connection")

    _engine = create_async_engine(
        database_url or str(settings.database_url),
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

    _async_session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with _engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection established")


async def close_db() -> None:
    """Close database connection pool."""
    global _engine, _async_session_factory  # noqa: PLW0603
    if _engine is not None:
        logger.info("Closing database connection pool")
        await _engine.dispose()
        _engine = None
        _async_session_factory = None


def store_error_message(exc: SQLAlchemyError) -> str:
    """Return the driver's own message for a failed statement."""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc)


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """Re-raise SQLAlchemy failures as StoreError with the message untouched."""
    try:
        yield
    except SQLAlchemyError as e:
        message = store_error_message(e)
        logger.warning("Store operation failed", error=message)
        raise StoreError(message) from e


async def get_db() -> AsyncGenerator[AsyncSession]:
    """
    Dependency that provides a read-write database session.

    Usage:
        @router.post("/opportunities")
        async def create(db: AsyncSession = Depends(get_db)):
            ...
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized — call init_db() first")

    async with _async_session_factory() as session:
        try:
            yield session
            with translate_store_errors():
                await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """Context manager for database access outside a request (e.g. the CLI).

    Commits on success and rolls back on error, like get_db().
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized — call init_db() first")

    async with _async_session_factory() as session:
        try:
            yield session
            with translate_store_errors():
                await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db_health() -> bool:
    """Check database health for readiness probe."""
    try:
        if _engine is None:
            return False
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
