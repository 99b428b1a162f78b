# tests/conftest.py
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from storecore import models  # noqa: F401  registers tables on Base.metadata
from storecore.core.config import Settings
from storecore.database import Base
from storecore.services.cache_service import CacheService
from storecore.services.product_service import ProductService
from storecore.services.stock_service import StockService
from tests.factories import STORE_A, STORE_B, create_store
from tests.mocks import MockDispatcher

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        SMTP_HOST="smtp.test.local",
        SMTP_USERNAME="alerts@test.local",
        SMTP_PASSWORD="secret",
        NOTIFICATION_EMAILS="ops@test.local",
    )


@pytest.fixture
async def test_engine():
    """Create the schema on a fresh in-memory database for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def file_engine(tmp_path):
    """
    SQLite file database with one connection per session.

    Every transaction starts with BEGIN IMMEDIATE, so concurrent writers queue
    on the database lock instead of sharing a connection.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def cache():
    return CacheService(max_entries=100, default_ttl=60)


@pytest.fixture
def dispatcher():
    return MockDispatcher()


@pytest.fixture
def product_service(cache, dispatcher, session_factory):
    return ProductService(cache=cache, dispatcher=dispatcher, session_factory=session_factory)


@pytest.fixture
def stock_service(session_factory, dispatcher):
    return StockService(session_factory=session_factory, default_threshold=5, dispatcher=dispatcher)


@pytest.fixture
async def stores(session_factory):
    """Two stores with unlimited licenses."""
    await create_store(session_factory, STORE_A, owner_email="owner-a@test.local")
    await create_store(session_factory, STORE_B, owner_email="owner-b@test.local")
    return STORE_A, STORE_B
