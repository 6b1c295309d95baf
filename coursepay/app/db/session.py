"""
Database engine and session factory.

Domain services never open sessions themselves: the AsyncSession is the
unit of work and is always passed in by the caller (request dependency,
scheduled job or test).
"""

from typing import Any, AsyncIterator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from coursepay.app.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Keyword arguments for create_async_engine; pool sizing only applies to server databases."""
    options: Dict[str, Any] = {"echo": settings.db_echo}
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency: one session per request.

    Work the request left uncommitted is rolled back when it fails.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
