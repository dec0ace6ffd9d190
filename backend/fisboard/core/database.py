"""Database configuration and session management.

This module constructs an asynchronous SQLAlchemy engine and session
factory for the receipt store.  The hosted database is Postgres; plain
``postgres://`` URLs are normalised to the async psycopg driver and
plain ``sqlite://`` URLs to aiosqlite so local runs need no extra
configuration.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Dict, Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base

from fisboard.core.config import settings

logger = logging.getLogger(__name__)


def normalise_database_url(raw_url: str) -> str:
    """Return ``raw_url`` rewritten to an async driver.

    - ``sqlite`` becomes ``sqlite+aiosqlite``
    - ``postgres``/``postgresql``/``postgresql+psycopg2`` become
      ``postgresql+psycopg`` with ``sslmode=require`` unless set
    """
    url_obj = make_url(raw_url)
    driver = url_obj.drivername or ""
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    elif driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        q = dict(url_obj.query or {})
        # Always require SSL unless explicitly disabled
        if not q.get("sslmode"):
            q["sslmode"] = "require"
        url_obj = url_obj.set(drivername="postgresql+psycopg", query=q)
    return url_obj.render_as_string(hide_password=False)


def create_engine_for(url: str) -> AsyncEngine:
    """Create an async engine for ``url`` after driver normalisation."""
    db_url = normalise_database_url(url)
    logger.info("Creating async engine for %s", make_url(db_url).render_as_string(hide_password=True))
    return create_async_engine(db_url, echo=False, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine`` (no expiry on commit)."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_for(settings.DATABASE_URL)

# Create session factory
AsyncSessionLocal = create_session_factory(engine)

# Declarative base
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a database session.

    This function is intended for FastAPI dependency injection.  Each
    session is scoped to the request and closed after use.
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create the receipt tables on ``target`` (defaults to the app engine)."""
    bind = target or engine
    async with bind.begin() as conn:
        # Import all models to ensure metadata is populated
        from fisboard.models import tables  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the current DB engine for debugging."""
    url_obj = engine.url
    return {
        "environment": (settings.ENVIRONMENT or "development"),
        "drivername": url_obj.drivername,
        "host": url_obj.host,
        "database": url_obj.database,
        "url": url_obj.render_as_string(hide_password=True),
    }
