# storecore/database.py

from contextlib import asynccontextmanager
from functools import lru_cache

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import declarative_base

from storecore.core.config import get_settings

Base = declarative_base()

# JSON columns store SQL NULL (not JSON 'null') for None so IS NULL predicates work
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def normalize_database_url(url: str) -> str:
    """Convert postgresql:// to postgresql+asyncpg:// for async support."""
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    if url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return url


@lru_cache()
def get_engine() -> AsyncEngine:
    settings = get_settings()
    database_url = normalize_database_url(settings.DATABASE_URL)
    if not database_url:
        raise ValueError("DATABASE_URL is not set in environment variables")

    return create_async_engine(
        database_url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        isolation_level=settings.DB_ISOLATION_LEVEL,
    )


@lru_cache()
def get_sessionmaker() -> async_sessionmaker:
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False
    )


@asynccontextmanager
async def get_session() -> AsyncSession:
    session = get_sessionmaker()()
    try:
        yield session
    finally:
        await session.close()
