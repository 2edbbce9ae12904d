"""
Pytest Configuration and Fixtures for the Passport Engine
=========================================================

Purpose
-------
Shared fixtures for the passport test suite: mocks for the event bus and
config, the in-memory gamification store, wired engine components, and
testcontainers-backed PostgreSQL / Redis for integration tests.

Architecture Notes
------------------
- Unit tests run against `tests.fakes.InMemoryGamificationStore`
- Integration tests use testcontainers (real PostgreSQL / Redis) and are
  skipped when Docker is unavailable
- Database fixtures create and drop the schema per test for a clean slate
"""

from __future__ import annotations

import os

os.environ.setdefault("TESTING", "true")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from typing import Any, AsyncGenerator, Dict, Generator, List

import pytest
import pytest_asyncio

from passport.core.logging.logger import get_logger
from passport.modules.gamification import (
    GamificationEngine,
    PassportService,
    QuestService,
    RewardGranter,
    SubjectSerializer,
)

from tests.fakes import InMemoryGamificationStore

logger = get_logger(__name__)

SUBJECT = "u-42"


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    Uses: Unit tests that assert on published events
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock(side_effect=lambda name, cb, **kw: kw.get("identifier"))
    mock_bus.unsubscribe = mocker.MagicMock(return_value=True)
    return mock_bus


@pytest.fixture
def config_values() -> Dict[str, Any]:
    """Overrides served by `mock_config_manager`; tests mutate this dict."""
    return {"gamification.xp_per_level": 1000}


@pytest.fixture
def mock_config_manager(mocker, config_values):
    """
    Mock ConfigManager for unit tests.

    Scope: function
    Uses: Unit tests; unknown keys resolve to the caller's default
    """
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(
        side_effect=lambda key, default=None: config_values.get(key, default)
    )
    return mock_config


# ============================================================================
# ENGINE FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def store() -> InMemoryGamificationStore:
    return InMemoryGamificationStore()


@pytest.fixture
def serializer(mock_config_manager) -> SubjectSerializer:
    return SubjectSerializer(mock_config_manager, get_logger("tests.serializer"))


@pytest.fixture
def engine(store, mock_config_manager, mock_event_bus, serializer) -> GamificationEngine:
    return GamificationEngine.build(store, mock_config_manager, mock_event_bus, serializer)


@pytest.fixture
def granter(store, mock_config_manager, mock_event_bus) -> RewardGranter:
    return RewardGranter(store, mock_config_manager, mock_event_bus, get_logger("tests.granter"))


@pytest.fixture
def quest_service(store, serializer, mock_config_manager, mock_event_bus) -> QuestService:
    return QuestService(store, serializer, mock_config_manager, mock_event_bus)


@pytest.fixture
def passport_service(
    store, granter, serializer, mock_config_manager, mock_event_bus
) -> PassportService:
    return PassportService(
        store,
        granter,
        serializer,
        mock_config_manager,
        mock_event_bus,
        get_logger("tests.passport"),
    )


# ============================================================================
# TESTCONTAINERS FIXTURES (Integration Tests)
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Start PostgreSQL testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    from testcontainers.postgres import PostgresContainer

    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker unavailable for PostgreSQL testcontainer: {exc}")

    logger.info("PostgreSQL testcontainer started: %s", container.get_connection_url())
    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest.fixture(scope="session")
def redis_container() -> Generator[Any, None, None]:
    """
    Start Redis testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    from testcontainers.redis import RedisContainer

    logger.info("Starting Redis testcontainer...")
    container = RedisContainer(image="redis:7-alpine")
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker unavailable for Redis testcontainer: {exc}")

    yield container

    logger.info("Stopping Redis testcontainer...")
    container.stop()


@pytest_asyncio.fixture
async def database(postgres_container) -> AsyncGenerator[None, None]:
    """
    Initialize DatabaseService against the container with a fresh schema.

    Scope: function (schema created and dropped around each test)
    """
    from passport.core.database.service import DatabaseService

    url = postgres_container.get_connection_url().replace("psycopg2", "asyncpg")
    await DatabaseService.initialize(url)
    await DatabaseService.create_schema()
    try:
        yield
    finally:
        await DatabaseService.drop_schema()
        await DatabaseService.shutdown()


@pytest_asyncio.fixture
async def redis_service(redis_container) -> AsyncGenerator[None, None]:
    from passport.core.redis.service import RedisService

    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    await RedisService.initialize(f"redis://{host}:{port}/0")
    try:
        yield
    finally:
        await RedisService.shutdown()


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def published_events(mock_event_bus) -> List[str]:
    """Event names passed to `mock_event_bus.publish`, in order."""
    return [call.args[0] for call in mock_event_bus.publish.await_args_list]


def published_payloads(mock_event_bus, event_name: str) -> List[Dict[str, Any]]:
    return [
        call.args[1]
        for call in mock_event_bus.publish.await_args_list
        if call.args[0] == event_name
    ]


def assert_domain_event_emitted(domain_model, event_name: str) -> bool:
    """
    Assert that a domain model emitted a specific event.

    Usage:
        progress.complete_current_step()
        assert assert_domain_event_emitted(progress, "quest.step_completed")
    """
    events = domain_model.get_pending_events()
    return any(event.event_name == event_name for event in events)
