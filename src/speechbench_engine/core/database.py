"""SQLite engine, session factory and schema setup."""

import logging
from pathlib import Path
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from speechbench_engine.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


def database_url(path: Union[str, Path]) -> str:
    return f"sqlite+aiosqlite:///{path}"


def create_engine_for(path: Union[str, Path], echo: bool = False) -> AsyncEngine:
    """Async engine over the SQLite file at ``path``."""
    return create_async_engine(database_url(path), echo=echo, future=True)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    # Repositories hand ORM rows back after commit, so they must stay loaded.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine_for(settings.DATABASE_PATH, echo=settings.DEBUG)
async_session_maker = create_session_maker(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create the batch tables if they do not exist yet."""
    import speechbench_engine.models  # noqa: F401  registers the tables on Base

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Schema ready at %s (%d tables)", target.url, len(Base.metadata.tables))


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
    logger.info("Database connections closed")
