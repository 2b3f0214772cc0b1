import asyncio
from collections.abc import AsyncGenerator
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from wishfund.core.config import settings

logger = logging.getLogger("wishfund.db")


def build_engine(dsn: str, **kwargs) -> AsyncEngine:
    """Create an async engine; SQLite connections get foreign keys switched on."""
    if "postgresql" in dsn.lower():
        kwargs.setdefault("pool_size", settings.db_pool_size)
        kwargs.setdefault("max_overflow", settings.db_max_overflow)
        kwargs.setdefault("pool_recycle", settings.db_pool_recycle)
        kwargs.setdefault("pool_timeout", settings.db_pool_timeout)
    async_engine = create_async_engine(dsn, echo=False, pool_pre_ping=True, **kwargs)
    if async_engine.dialect.name == "sqlite":
        event.listen(async_engine.sync_engine, "connect", _sqlite_foreign_keys)
    return async_engine


def _sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


engine = build_engine(settings.postgres_dsn)


class Base(DeclarativeBase):
    pass


async_session_factory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)

_schema_ready = False
_schema_lock = asyncio.Lock()


async def create_schema(target: AsyncEngine | None = None) -> None:
    from wishfund.models import models as _models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ensure_schema_ready() -> None:
    """Create tables once for environments where startup hooks are skipped."""
    global _schema_ready
    if _schema_ready:
        return

    async with _schema_lock:
        if _schema_ready:
            return
        await create_schema()
        _schema_ready = True
        logger.info("Database schema ready")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    await ensure_schema_ready()
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
