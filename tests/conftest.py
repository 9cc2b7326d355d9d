"""Test fixtures and configuration."""

import logging
import os
import sys
from uuid import uuid4

# Must be set before ledgermatch.config is imported
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("RECURRING_JOB_ENABLED", "false")

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ledgermatch.logger import get_logger

logger = get_logger(__name__)

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys/caplog capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with the full schema.

    StaticPool keeps a single connection so every session in a test sees the
    same database.
    """
    from ledgermatch.database import Base
    import ledgermatch.models  # noqa: F401

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
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    """Database session for a single test."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def account_id():
    return uuid4()


@pytest_asyncio.fixture
async def client(session_maker, user_id):
    """Authenticated async test client bound to the test database."""
    from ledgermatch import database
    from ledgermatch.main import app
    from ledgermatch.security import create_access_token

    previous = database.set_test_session_maker(session_maker)
    token = create_access_token(data={"sub": str(user_id)})
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(
            transport=transport,
            base_url="http://test",
            headers={"Authorization": f"Bearer {token}"},
        ) as client_instance:
            yield client_instance
    finally:
        database.set_test_session_maker(previous)


@pytest_asyncio.fixture
async def public_client(session_maker):
    """Test client without auth headers."""
    from ledgermatch import database
    from ledgermatch.main import app

    previous = database.set_test_session_maker(session_maker)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client_instance:
            yield client_instance
    finally:
        database.set_test_session_maker(previous)


@pytest.fixture(autouse=True)
def reset_engine_config_cache():
    """Drop cached engine tuning so env overrides in one test do not leak."""
    from ledgermatch.services import engine_config

    engine_config._matching_cache = None
    engine_config._detection_cache = None
    yield
    engine_config._matching_cache = None
    engine_config._detection_cache = None
