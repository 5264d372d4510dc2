"""
Async engine and sessions for the inbox database.

Nothing connects at import time: the engine is created on first use from
DATABASE_URL (read from .env.local / .env at the repository root when the
process environment does not set it).
"""
import logging
import os
import threading
from collections.abc import AsyncGenerator

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

logger = logging.getLogger(__name__)

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.."))

_init_lock = threading.RLock()
_env_loaded = False
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def normalize_database_url(url: str) -> str:
    """Plain postgres URLs are pointed at the asyncpg driver"""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def _load_env_once() -> None:
    global _env_loaded
    with _init_lock:
        if _env_loaded:
            return
        load_dotenv(os.path.join(project_root, ".env.local"))
        load_dotenv(os.path.join(project_root, ".env"))
        _env_loaded = True


def get_engine() -> AsyncEngine:
    global _engine
    with _init_lock:
        if _engine is None:
            _load_env_once()
            url = normalize_database_url(os.getenv("DATABASE_URL", ""))
            if not url:
                raise RuntimeError("DATABASE_URL is not configured")
            _engine = create_async_engine(
                url,
                pool_pre_ping=True,
                # Transaction-mode poolers reject server-side prepared statements
                connect_args={"prepared_statement_cache_size": 0, "statement_cache_size": 0},
            )
            logger.info("Database engine created", extra={"driver": url.split("://", 1)[0]})
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    with _init_lock:
        if _session_factory is None:
            # Rows stay readable after commit; the sync engine reads them back for logging
            _session_factory = async_sessionmaker(
                get_engine(), class_=AsyncSession, expire_on_commit=False
            )
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    """Closes pooled connections; the next session builds a fresh engine"""
    global _engine, _session_factory
    with _init_lock:
        engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")


def reset_session_state_for_testing() -> None:
    global _env_loaded, _engine, _session_factory
    with _init_lock:
        _env_loaded = False
        _engine = None
        _session_factory = None
