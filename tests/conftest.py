"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_KEY", "x3x0yFJfT9dCwqZK8l8d1Yx2lQ4sG6mH7nB0vC5rE1I=")

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from src.database import Base
import src.models  # noqa: F401 - registers every table on Base.metadata
from src.models.platform import Platform


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests, with working SAVEPOINTs."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
async def session_factory(db):
    """Factory bound to the same engine as `db`, for code that opens its own sessions."""
    return async_sessionmaker(db.bind, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis; prevents real Redis calls in every test."""
    with patch("src.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.lpush = AsyncMock(return_value=1)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture(autouse=True)
def _no_alert_webhook():
    """Alerts only go to logs in tests."""
    with patch("src.utils.alerting._send_webhook_alert", new_callable=AsyncMock):
        yield


async def _create_platform(db, slug: str, webhook_only: bool = False, is_enabled: bool = True) -> Platform:
    platform = Platform(
        slug=slug, name=slug.capitalize(), webhook_only=webhook_only, is_enabled=is_enabled
    )
    db.add(platform)
    await db.commit()
    return platform


@pytest.fixture
async def stripe_platform(db):
    return await _create_platform(db, "stripe")


@pytest.fixture
async def hotmart_platform(db):
    return await _create_platform(db, "hotmart", webhook_only=True)


@pytest.fixture
async def cartpanda_platform(db):
    return await _create_platform(db, "cartpanda", webhook_only=True)


@pytest.fixture
def make_platform(db):
    """Create an extra platform row: await make_platform("kiwify")."""
    async def _make(slug: str, webhook_only: bool = False, is_enabled: bool = True) -> Platform:
        return await _create_platform(db, slug, webhook_only=webhook_only, is_enabled=is_enabled)
    return _make
