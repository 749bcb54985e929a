"""Outbox processor replaying catalog events into the metadata sink.

Follows the start/stop background task pattern of the other long-running
services: ``start`` spawns the loop, ``stop`` signals shutdown and joins.
Every iteration runs in its own READ COMMITTED transaction and locks the
pending rows it selects, so a second processor cannot dispatch them too.
"""

import asyncio
import time
from typing import List, Optional

from catalog_storage.constants import (
    DEFAULT_EVENTS_INITIAL_DELAY,
    EVENT_FAILED,
    EVENT_PROCESSED,
    EVENTS_NAMESPACE,
    ID,
    SCHEMA_METADATA_NAMESPACE,
)
from catalog_storage.core.exceptions import InvalidArgumentError, NotFoundError
from catalog_storage.core.logging import get_logger, log_execution_time
from catalog_storage.models.catalog import SchemaMetadataStorable, SchemaVersionStorable
from catalog_storage.models.events import EventStorable, EventType
from catalog_storage.models.search import SearchQuery
from catalog_storage.models.storable import OrderByField, QueryParam
from catalog_storage.services.metadata_sink import MetadataSinkProtocol
from catalog_storage.storage.manager import StorageManager
from catalog_storage.storage.transaction import TransactionIsolation, managed_transaction

logger = get_logger(__name__)


class EventsProcessor:
    """Drains pending event rows into a MetadataSinkProtocol.

    A row that fails to dispatch is marked failed and left for manual
    intervention; the rest of the batch carries on. Errors outside a single
    row are logged and the cycle is retried after the idle interval.
    """

    def __init__(self, storage_manager: StorageManager, sink: MetadataSinkProtocol,
                 wait_between_processing: float = 10.0,
                 initial_delay: float = DEFAULT_EVENTS_INITIAL_DELAY,
                 connect_with_topics: bool = False):
        """Initialize the processor.

        Args:
            storage_manager: database-backed manager, never the cached one
            sink: external metadata graph
            wait_between_processing: seconds to idle between batches
            initial_delay: seconds to wait before the first batch
            connect_with_topics: link created schemas to their topics
        """
        if wait_between_processing <= 0:
            raise InvalidArgumentError("Wait period must be greater than 0",
                                       operation="configure_events_processor",
                                       details={"wait_between_processing": wait_between_processing})
        self.storage_manager = storage_manager
        self.sink = sink
        self.wait_between_processing = wait_between_processing
        self.initial_delay = initial_delay
        self.connect_with_topics = connect_with_topics
        self._shutdown = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        logger.info("Events processor configured", connect_with_topics=connect_with_topics)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the processing loop as a background task."""
        if self.is_running:
            logger.warning("Events processor already running")
            return
        self._shutdown.clear()
        self._task = asyncio.create_task(self._run(), name="events-processor")
        logger.info("Events processor started",
                    wait_between_processing=self.wait_between_processing,
                    initial_delay=self.initial_delay)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Signal shutdown and wait for the loop to finish its batch.

        With a timeout, a loop still busy after that many seconds is cancelled.
        """
        self._shutdown.set()
        if self._task:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout)
            except asyncio.TimeoutError:
                logger.warning("Events processor did not stop in time, cancelling", timeout=timeout)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("Events processor stopped")

    async def _wait(self, seconds: float) -> bool:
        """Idle for up to ``seconds``; True when shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        """Main loop. Only shutdown or cancellation ends it."""
        logger.debug("Events processor warming up", initial_delay=self.initial_delay)
        if await self._wait(self.initial_delay):
            return
        while not self._shutdown.is_set():
            try:
                await self.process_events()
            except Exception as e:
                logger.error("An error occurred while processing events", error=str(e), exc_info=True)
            if await self._wait(self.wait_between_processing):
                break

    async def process_events(self) -> int:
        """Run one batch in its own transaction.

        Returns:
            Number of pending events that were picked up
        """
        async with managed_transaction(self.storage_manager, TransactionIsolation.READ_COMMITTED):
            query = (SearchQuery.search_from(EVENTS_NAMESPACE)
                     .where_eq(EVENT_PROCESSED, False)
                     .where_eq(EVENT_FAILED, False)
                     .order_by(OrderByField.asc(ID))
                     .for_update())

            start_time = time.time()
            events: List[EventStorable] = await self.storage_manager.search(query)
            log_execution_time(logger, "search_pending_events", start_time, time.time(),
                               count=len(events))

            if not events:
                return 0

            logger.info("Processing events", count=len(events))
            for event in events:
                try:
                    logger.debug("Processing event", event_id=event.id, event_type=event.type)
                    await self.process_event(event)
                except Exception as e:
                    logger.error("Could not process event, setting it to failed",
                                 event_id=event.id, error=str(e), exc_info=True)
                    await self._mark_failed(event)
            return len(events)

    async def process_event(self, event: EventStorable) -> None:
        """Dispatch one event and persist it as processed.

        Raises:
            NotFoundError: if a referenced catalog record no longer exists
            ValueError: for an unknown event type or a missing reference
        """
        if event.processed_id is None:
            raise InvalidArgumentError("Event has no processed id", operation="process_event",
                                       details={"event_id": event.id})

        event_type = event.event_type
        if event_type is EventType.CREATE_META:
            await self._create_meta(event.processed_id)
        elif event_type is EventType.UPDATE_META:
            await self._update_meta(event.processed_id)
        elif event_type is EventType.CREATE_VERSION:
            await self._create_version(event.processed_id)

        event.processed = True
        await self.storage_manager.update(event)

    async def _mark_failed(self, event: EventStorable) -> None:
        try:
            event.failed = True
            await self.storage_manager.update(event)
        except Exception as e:
            logger.error("Failed to set event state to failed", event_id=event.id, error=str(e))

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _create_meta(self, schema_metadata_id: int) -> None:
        meta = await self._require_meta(schema_metadata_id)
        external_id = await self.sink.create_meta(meta)
        if external_id is not None and self.connect_with_topics:
            logger.debug("Connecting schema with topic", schema=meta.name)
            if await self.sink.is_topic_model_initialized():
                await self.sink.connect_to_external_topic(external_id, meta)

    async def _update_meta(self, schema_metadata_id: int) -> None:
        meta = await self._require_meta(schema_metadata_id)
        await self.sink.update_meta(meta)

    async def _create_version(self, version_id: int) -> None:
        version = await self.storage_manager.get(SchemaVersionStorable.key_of(id=version_id))
        if version is None:
            raise NotFoundError(f"Did not find schema version with ID {version_id}",
                                operation="create_version")
        meta = await self._get_meta(version.schema_metadata_id)
        if meta is None:
            raise NotFoundError(
                f"Did not find schema with ID {version.schema_metadata_id} for version with ID {version_id}",
                operation="create_version",
            )
        await self.sink.add_version(meta.name, version)

    async def _require_meta(self, schema_metadata_id: int) -> SchemaMetadataStorable:
        meta = await self._get_meta(schema_metadata_id)
        if meta is None:
            raise NotFoundError(f"Did not find schema with ID {schema_metadata_id}",
                                operation="dispatch_event")
        return meta

    async def _get_meta(self, schema_metadata_id: int) -> Optional[SchemaMetadataStorable]:
        found = await self.storage_manager.find(SCHEMA_METADATA_NAMESPACE,
                                                [QueryParam(ID, str(schema_metadata_id))])
        if not found:
            return None
        if len(found) > 1:
            logger.warning("No unique schema entry for id", schema_metadata_id=schema_metadata_id)
        return found[0]
