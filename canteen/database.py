"""
Database Connection Module
Handles the relational store connection using SQLAlchemy async engine.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
import logging

from canteen.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Build an async engine for the given URL.

    SQLite URLs skip the pool sizing options, which only apply to
    queue-based pools.
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.db_pool_size,  # Connection pool size
        max_overflow=settings.db_max_overflow,  # Extra connections when pool is full
        pool_pre_ping=True,
    )


def make_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False  # Objects remain accessible after commit
    )


engine = make_engine(settings.database_url, echo=settings.sql_echo)

# Session factory - creates new database sessions
async_session_maker = make_session_maker(engine)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register the mapped classes on Base.metadata
    import canteen.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
