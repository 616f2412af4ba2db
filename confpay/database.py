"""
Database engine and session management.

asyncpg in production, aiosqlite in tests; both go through build_engine().
Services commit their own writes, so sessions here only guard the
request/job boundary.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from confpay.config import settings

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """
    Force the asyncpg driver for bare postgres URLs and drop sslmode,
    which asyncpg rejects as a query parameter.
    """
    if not url:
        return ""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            url = "postgresql+asyncpg://" + url[len(prefix):]
            break
    if "?" in url:
        base, query = url.split("?", 1)
        params = [p for p in query.split("&") if p and not p.startswith("sslmode=")]
        url = f"{base}?{'&'.join(params)}" if params else base
    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend."""
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def _engine_from_settings() -> Optional[AsyncEngine]:
    url = normalize_database_url(settings.database_url)
    if not url:
        logger.warning("DATABASE_URL not configured. Database features disabled.")
        return None
    return build_engine(url, echo=settings.debug)


# None when DATABASE_URL is unset
engine = _engine_from_settings()

async_session_maker = (
    async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if engine
    else None
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session for scripts and Celery jobs; rolled back if the body raises."""
    if not async_session_maker:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")

    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with get_db_context() as session:
        yield session


async def init_db() -> None:
    """Create tables directly (development only; production uses Alembic)."""
    if not engine:
        logger.info("Skipping database initialization - DATABASE_URL not configured")
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of pooled connections."""
    if engine:
        await engine.dispose()
