"""SchoolGate Database Configuration - Async SQLAlchemy."""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from schoolgate.core.config import Settings, settings
from schoolgate.core.logging import get_logger

logger = get_logger("database")

Base = declarative_base()


def build_engine(config: Settings, url: str | None = None) -> AsyncEngine:
    """Create the async engine for a database URL.

    Pool sizing (DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT, DB_POOL_RECYCLE)
    applies to server databases only; SQLite uses SQLAlchemy's default pool.
    """
    database_url = url or str(config.database_url)
    echo = config.debug and config.log_level == "DEBUG"
    if make_url(database_url).get_backend_name() == "sqlite":
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_timeout=config.db_pool_timeout,
        pool_recycle=config.db_pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


engine = build_engine(settings)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a database session from the app's session factory."""
    factory = getattr(request.app.state, "session_factory", async_session_maker)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            # Includes CancelledError so an aborted request still rolls back
            await session.rollback()
            raise


async def check_db_connection(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> bool:
    """Check if database is reachable."""
    factory = session_factory or async_session_maker
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
            return True
    except (OSError, ConnectionError) as e:
        logger.debug(f"Database connection check failed: {e}")
        return False
    except SQLAlchemyError as e:
        logger.warning(f"Unexpected error checking database connection: {e}")
        return False
