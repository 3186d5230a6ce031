import logging
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from upgrade_state.core.settings import get_settings

logger = logging.getLogger(__name__)

IN_MEMORY_URL = "sqlite+aiosqlite:///:memory:"


class Base(DeclarativeBase):
    pass


# Global engine/session factory
_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        if ":memory:" in url:
            # Every pooled connection would otherwise get its own empty database
            return create_async_engine(url, echo=echo, poolclass=StaticPool)
        return create_async_engine(url, echo=echo)

    if "asyncpg" in url:
        u = make_url(url)
        q = dict(u.query)
        connect_args: dict[str, Any] = {}

        # asyncpg takes ssl as a connect arg, not sslmode in the query string
        if "sslmode" in q:
            mode = q.pop("sslmode")
            if mode in ("require", "verify-full"):
                connect_args["ssl"] = "require"
            elif mode == "disable":
                connect_args["ssl"] = False

        q.pop("channel_binding", None)

        u = u.set(query=q)
        return create_async_engine(u, connect_args=connect_args, echo=echo, pool_pre_ping=True)

    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def init_db() -> AsyncEngine:
    settings = get_settings()
    url = settings.database.url

    global _async_engine, _async_session_factory

    if url:
        safe_url = url.split("@")[-1] if "@" in url else url
        logger.info("Connecting to database: %s", safe_url)
    else:
        logger.warning("DATABASE_URL not set. Using in-memory SQLite. Data will be lost on restart.")
        url = IN_MEMORY_URL

    _async_engine = build_engine(url, echo=settings.database.echo)
    _async_session_factory = async_sessionmaker(_async_engine, expire_on_commit=False)
    return _async_engine


def get_engine() -> Optional[AsyncEngine]:
    return _async_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _async_session_factory is None:
        init_db()
    return _async_session_factory


async def create_tables() -> None:
    # Register mapped tables on Base.metadata
    import upgrade_state.models  # noqa: F401

    engine = _async_engine or init_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_health() -> dict[str, Any]:
    """Simple health check: SELECT 1"""
    if not _async_engine:
        return {"ok": False, "error": "Database not initialized"}

    try:
        async with _async_engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            row = result.fetchone()
            return {
                "ok": bool(row and row[0] == 1),
                "driver": _async_engine.driver,
                "dialect": _async_engine.dialect.name,
            }
    except Exception as e:
        logger.error("DB Health Check Failed: %s", e)
        return {"ok": False, "error": str(e)}


async def dispose_db() -> None:
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        yield session


__all__ = [
    "Base",
    "IN_MEMORY_URL",
    "build_engine",
    "init_db",
    "get_engine",
    "get_session_factory",
    "create_tables",
    "check_db_health",
    "dispose_db",
    "get_db_session",
]
