"""
Database engine configuration for the TMS-MTM rule engine

Async SQLAlchemy 2.0 setup. PostgreSQL (asyncpg) gets a sized connection
pool; SQLite (aiosqlite) is supported for local runs and tests.
"""

import logging

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from config.config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, ENVIRONMENT

logger = logging.getLogger(__name__)


# Global engine and session maker
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def build_engine(url: str, production: bool = False) -> AsyncEngine:
    """
    Create an async engine with pool settings for the URL's backend

    Args:
        url: SQLAlchemy database URL
        production: Double the pool size and overflow

    Returns:
        New AsyncEngine instance
    """
    if url.startswith("sqlite"):
        if ":memory:" in url:
            # One shared connection, otherwise every checkout sees an empty database
            return create_async_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(url)

    connect_args = {}
    if url.startswith("postgresql+asyncpg"):
        connect_args = {
            "statement_cache_size": 0,  # Disable prepared statement cache
            "server_settings": {"application_name": "tms_mtm"},
        }

    return create_async_engine(
        url,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=DB_POOL_SIZE * 2 if production else DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW * 2 if production else DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,  # Recycle connections every hour
        echo=False,
        connect_args=connect_args,
    )


def get_engine() -> AsyncEngine:
    """Get the process-wide engine for DATABASE_URL, creating it on first use"""
    global engine

    if engine is None:
        engine = build_engine(DATABASE_URL, production=ENVIRONMENT == "production")
        logger.info(
            f"Database engine created - Environment: {ENVIRONMENT}, "
            f"Backend: {engine.dialect.name}"
        )

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Create async session maker

    Returns:
        Configured async_sessionmaker instance
    """
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # Services read rows after committing
            autoflush=False,
        )

        logger.info("Session maker created")

    return AsyncSessionLocal


async def dispose_engine() -> None:
    """
    Dispose database engine and close all connections

    Call this on application shutdown
    """
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None
