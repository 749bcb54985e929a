"""Dependency injection container for the storage core."""

from dependency_injector import containers, providers

from catalog_storage.core.cache import StorableCache
from catalog_storage.core.config import Settings
from catalog_storage.core.database import Database
from catalog_storage.models.storable import StorableFactory
from catalog_storage.services.events_processor import EventsProcessor
from catalog_storage.storage.cached_manager import CacheBackedStorageManager
from catalog_storage.storage.dialects import create_dialect
from catalog_storage.storage.executor import QueryExecutor
from catalog_storage.storage.sql_manager import SqlStorageManager


class Container(containers.DeclarativeContainer):
    """Storage core dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database engine and SQL dialect
    database = providers.Singleton(
        Database,
        settings=settings
    )

    dialect = providers.Singleton(
        create_dialect,
        name=settings.provided.dialect_name
    )

    storable_factory = providers.Singleton(
        StorableFactory
    )

    query_executor = providers.Singleton(
        QueryExecutor,
        database=database,
        dialect=dialect,
        storable_factory=storable_factory
    )

    # Authoritative store (also used by the events processor)
    storage_manager = providers.Singleton(
        SqlStorageManager,
        executor=query_executor,
        lock_poll_interval=settings.provided.lock_poll_interval
    )

    # Cache and the cache-backed manager request paths use
    cache = providers.Singleton(
        StorableCache.from_settings,
        max_size=settings.provided.cache_max_size,
        expire_after_access=settings.provided.cache_expire_after_access
    )

    cached_storage_manager = providers.Singleton(
        CacheBackedStorageManager,
        cache=cache,
        delegate=storage_manager
    )

    # Supplied by the host application
    metadata_sink = providers.Dependency()

    events_processor = providers.Singleton(
        EventsProcessor,
        storage_manager=storage_manager,
        sink=metadata_sink,
        wait_between_processing=settings.provided.events_wait_between_processing,
        initial_delay=settings.provided.events_initial_delay,
        connect_with_topics=settings.provided.events_connect_with_topics
    )


# Global container instance
container = Container()
