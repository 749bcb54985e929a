"""Database-backed storage manager."""

from typing import Iterable, List, Optional, Sequence, Type

from catalog_storage.constants import DEFAULT_LOCK_POLL_INTERVAL
from catalog_storage.core.logging import get_logger
from catalog_storage.models.search import SearchQuery
from catalog_storage.models.storable import OrderByField, QueryParam, Storable, StorableKey
from catalog_storage.storage.executor import QueryExecutor
from catalog_storage.storage.manager import StorageManager, poll_for_lock, resolve_query_params
from catalog_storage.storage.transaction import TransactionIsolation

logger = get_logger(__name__)


class SqlStorageManager(StorageManager):
    """Storage manager that persists through a QueryExecutor.

    This is the authoritative store: the cache-backed manager and the
    events processor both sit on top of it.
    """

    def __init__(self, executor: QueryExecutor,
                 lock_poll_interval: float = DEFAULT_LOCK_POLL_INTERVAL):
        self.executor = executor
        self.lock_poll_interval = lock_poll_interval

    async def add(self, storable: Storable) -> None:
        await self.executor.insert(storable)

    async def remove(self, key: StorableKey) -> Optional[Storable]:
        old_value = await self.get(key)
        if old_value is not None:
            await self.executor.delete(key)
        return old_value

    async def add_or_update(self, storable: Storable) -> None:
        await self.executor.insert_or_update(storable)

    async def update(self, storable: Storable) -> None:
        updated = await self.executor.update(storable)
        if not updated:
            logger.debug("Update matched no rows", namespace=storable.get_namespace())

    async def get(self, key: StorableKey) -> Optional[Storable]:
        rows = await self.executor.select(key)
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning("More than one row for key, returning the first",
                           namespace=key.namespace, key=repr(key.primary_key), rows=len(rows))
        return rows[0]

    async def find(self, namespace: str, params: Optional[Iterable[QueryParam]],
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        columns = await self.executor.get_columns(namespace)
        primary_key = resolve_query_params(namespace, params, columns)
        if primary_key is None:
            return await self.list(namespace, order_by_fields)
        return await self.executor.select(StorableKey(namespace, primary_key), order_by_fields)

    async def search(self, query: SearchQuery) -> List[Storable]:
        return await self.executor.search(query)

    async def list(self, namespace: str,
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        return await self.executor.select_all(namespace, order_by_fields)

    async def next_id(self, namespace: str) -> int:
        return await self.executor.next_id(namespace)

    def register_storables(self, classes: Iterable[Type[Storable]]) -> None:
        self.executor.storable_factory.add_storable_classes(classes)

    async def cleanup(self) -> None:
        await self.executor.cleanup()

    # =========================================================================
    # Polling locks
    # =========================================================================

    async def read_lock(self, key: StorableKey, timeout: float) -> bool:
        async def acquire() -> bool:
            return bool(await self.executor.select_for_share(key))

        return await poll_for_lock(acquire, timeout, self.lock_poll_interval)

    async def write_lock(self, key: StorableKey, timeout: float) -> bool:
        async def acquire() -> bool:
            return bool(await self.executor.select_for_update(key))

        return await poll_for_lock(acquire, timeout, self.lock_poll_interval)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def begin_transaction(self, isolation: TransactionIsolation) -> None:
        await self.executor.begin_transaction(isolation)

    async def commit_transaction(self) -> None:
        await self.executor.commit_transaction()

    async def rollback_transaction(self) -> None:
        await self.executor.rollback_transaction()
