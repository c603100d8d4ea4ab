"""
Async SQLAlchemy access to the Supabase Postgres store.

Payments, subscriptions, bookings, notifications and webhook logs all live
in the same database; the API and the Celery sweep share this session setup.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings, settings

logger = logging.getLogger(__name__)

ASYNC_SCHEMES = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
}


def get_database_url(url: str) -> str:
    """
    Normalise a Supabase connection string for asyncpg.

    asyncpg rejects the libpq `sslmode` query parameter, so it is dropped
    and SSL is requested through connect_args instead.
    """
    if not url:
        return ""
    parts = urlsplit(url)
    if parts.scheme not in ASYNC_SCHEMES:
        return url
    scheme = ASYNC_SCHEMES[parts.scheme]
    query = urlencode([(k, v) for k, v in parse_qsl(parts.query) if k != "sslmode"])
    return urlunsplit((scheme, parts.netloc, parts.path, query, parts.fragment))


def build_engine(config: Settings) -> Optional[AsyncEngine]:
    db_url = get_database_url(config.database_url)
    if not db_url:
        logger.warning("DATABASE_URL not configured. Payment storage disabled.")
        return None

    if db_url.startswith("sqlite"):
        return create_async_engine(db_url, echo=config.debug)

    return create_async_engine(
        db_url,
        echo=config.debug,
        pool_pre_ping=True,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        connect_args={"ssl": True},
    )


engine = build_engine(settings)

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
    """Session scope for code running outside a request, e.g. the sweep task."""
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
    """FastAPI dependency wrapping get_db_context."""
    async with get_db_context() as session:
        yield session


async def init_db() -> None:
    """Create missing tables. Production schema changes go through Alembic."""
    if not engine:
        logger.info("Skipping database initialization - DATABASE_URL not configured")
        return

    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    if engine:
        await engine.dispose()
