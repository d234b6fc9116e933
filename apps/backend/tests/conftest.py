"""Test fixtures and configuration.

Every test gets a fresh in-memory SQLite database (aiosqlite + StaticPool), so
isolation comes from the engine rather than from transaction rollback.
"""

import logging
import os
import sys
from uuid import uuid4

# Settings are read at import time; point the app at SQLite before importing it.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["ENVIRONMENT"] = "testing"

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from bankrec import database
from bankrec.database import Base
from bankrec.logger import get_logger
from bankrec.services.matching_config import DEFAULT_CONFIG, MatchingConfig
from bankrec.services.patterns import InMemoryPatternStore, KeyedLocks, PatternLearner
from tests.fakes import InMemoryRecordSource, RecordingPublisher, StaticTrustLedger

logger = get_logger(__name__)


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Route structlog through stdlib so caplog/capsys see log lines."""
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


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory schema per test."""
    from bankrec import models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(db_engine):
    session = AsyncSession(bind=db_engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def test_user_id():
    return uuid4()


@pytest.fixture
def matching_config() -> MatchingConfig:
    return DEFAULT_CONFIG


@pytest.fixture
def record_source() -> InMemoryRecordSource:
    return InMemoryRecordSource()


@pytest.fixture
def trust_ledger() -> StaticTrustLedger:
    return StaticTrustLedger()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def pattern_store(test_user_id) -> InMemoryPatternStore:
    return InMemoryPatternStore(test_user_id)


@pytest.fixture
def learner(pattern_store, matching_config) -> PatternLearner:
    return PatternLearner(pattern_store, matching_config, locks=KeyedLocks())


@pytest_asyncio.fixture(scope="function")
async def client(db, test_user_id, record_source, trust_ledger, publisher, matching_config):
    """Authenticated client sharing the test session and collaborator doubles."""
    from bankrec.deps import get_event_publisher, get_matching_config, get_record_sources, get_trust_ledger
    from bankrec.main import app
    from bankrec.security import create_access_token

    async def _override_get_db():
        yield db

    app.dependency_overrides[database.get_db] = _override_get_db
    app.dependency_overrides[get_record_sources] = lambda: [record_source]
    app.dependency_overrides[get_trust_ledger] = lambda: trust_ledger
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_matching_config] = lambda: matching_config

    token = create_access_token(data={"sub": str(test_user_id)})
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            headers={"Authorization": f"Bearer {token}"},
        ) as client_instance:
            yield client_instance
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def public_client(db):
    """Client without auth headers."""
    from bankrec.main import app

    async def _override_get_db():
        yield db

    app.dependency_overrides[database.get_db] = _override_get_db
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client_instance:
            yield client_instance
    finally:
        app.dependency_overrides.clear()
