"""Shared fixtures: settings, a SQLite database per test and managers."""

import pytest
import pytest_asyncio

from catalog_storage.core.cache import ExpiryPolicy, StorableCache
from catalog_storage.core.config import Settings
from catalog_storage.core.database import Database
from catalog_storage.models import CATALOG_STORABLES, StorableFactory
from catalog_storage.storage.dialects import SqliteDialect
from catalog_storage.storage.executor import QueryExecutor
from catalog_storage.storage.memory import InMemoryStorageManager
from catalog_storage.storage.sql_manager import SqlStorageManager


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/catalog.db",
        log_level="DEBUG",
        log_format="console",
        lock_poll_interval=0.01,
        events_initial_delay=0,
        events_wait_between_processing=0.05,
    )


@pytest.fixture
def storable_factory():
    factory = StorableFactory()
    factory.add_storable_classes(CATALOG_STORABLES)
    return factory


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings)
    await db.startup(tables=CATALOG_STORABLES)
    yield db
    await db.shutdown()


@pytest.fixture
def executor(database, storable_factory):
    return QueryExecutor(database, SqliteDialect(), storable_factory)


@pytest.fixture
def sql_manager(executor):
    return SqlStorageManager(executor, lock_poll_interval=0.01)


@pytest.fixture
def memory_manager(storable_factory):
    return InMemoryStorageManager(storable_factory, lock_poll_interval=0.01)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return StorableCache(ExpiryPolicy(max_size=100, expire_after_access=60.0), clock=clock)
