"""Waitlist Database Configuration - Async SQLAlchemy.

The relational store is optional: an engine is only built when a database
URL is configured.
"""

import ssl
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from waitlist.core.config import Settings
from waitlist.core.logging import get_logger

logger = get_logger("database")

# Base class for models
Base = declarative_base()


def normalize_database_url(url: str) -> str:
    """Map hosting-provider style URLs onto an async SQLAlchemy driver.

    ``postgres://`` and ``postgresql://`` become ``postgresql+asyncpg://``;
    URLs that already name a driver are returned unchanged.
    """
    url = url.strip()
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://") :]
    if url.startswith("sqlite://"):
        url = "sqlite+aiosqlite://" + url[len("sqlite://") :]
    return url


def _postgres_ssl(mode: str) -> Any:
    """asyncpg ``ssl`` connect argument for a PG_SSLMODE value."""
    if mode == "disable":
        return False
    if mode == "verify-full":
        return ssl.create_default_context()
    # "require": encrypt without verifying the server certificate
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create an async engine with pool settings from configuration."""
    url = normalize_database_url(settings.database_url)
    echo = settings.debug and settings.log_level == "DEBUG"

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    connect_args: dict[str, Any] = {}
    if url.startswith("postgresql+asyncpg"):
        connect_args["ssl"] = _postgres_ssl(settings.pg_sslmode)

    return create_async_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,  # Verify connection before use
        connect_args=connect_args,
        echo=echo,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def check_db_connection(engine: AsyncEngine) -> bool:
    """Check if database is reachable."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except (OSError, ConnectionError) as e:
        logger.debug(f"Database connection check failed: {e}")
        return False
    except Exception as e:
        logger.warning(f"Unexpected error checking database connection: {e}")
        return False
