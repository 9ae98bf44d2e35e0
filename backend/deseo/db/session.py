import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from deseo.core.config import settings


logger = logging.getLogger("deseo.db")


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool settings for ``database_url``; only server databases get a sized pool."""
    options: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if make_url(database_url).get_backend_name() == "postgresql":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
            pool_timeout=settings.db_pool_timeout,
        )
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))


class Base(DeclarativeBase):
    pass


async_session_factory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)

_schema_ready = False
_schema_lock = asyncio.Lock()


async def ensure_schema_ready() -> None:
    """Create missing tables once per process."""
    global _schema_ready
    if _schema_ready:
        return

    async with _schema_lock:
        if _schema_ready:
            return

        from deseo.models import models as _models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready tables=%d", len(Base.metadata.tables))
        _schema_ready = True


async def dispose_engine() -> None:
    await engine.dispose()
    logger.info("Database engine disposed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    await ensure_schema_ready()
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
