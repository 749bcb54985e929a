"""Storage core lifecycle: startup and shutdown of the wired components."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from catalog_storage.core.container import Container, container as default_container
from catalog_storage.core.logging import configure_logging, get_logger
from catalog_storage.models import CATALOG_STORABLES

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(container: Optional[Container] = None) -> AsyncIterator[Container]:
    """Start the storage core and tear it down in reverse order.

    The events processor only runs when enabled, when a metadata sink has
    been provided and when the dialect supports row-locking reads.
    """
    container = container or default_container
    settings = container.settings()
    configure_logging(settings)

    logger.info("Starting catalog storage", dialect=settings.dialect_name)
    database = container.database()
    await database.startup(tables=CATALOG_STORABLES)

    storage_manager = container.cached_storage_manager()
    storage_manager.register_storables(CATALOG_STORABLES)

    processor = None
    if settings.events_processor_enabled:
        if not container.metadata_sink.is_defined:
            logger.info("No metadata sink provided, events processor not started")
        elif not container.dialect().supports_row_locks:
            logger.warning("Events processor needs row-locking reads, not started",
                           dialect=settings.dialect_name)
        else:
            processor = container.events_processor()
            await processor.start()

    logger.info("Catalog storage started")
    try:
        yield container
    finally:
        if processor is not None:
            await processor.stop()
        await storage_manager.cleanup()
        await database.shutdown()
        logger.info("Catalog storage shutdown complete")
