"""Write-through, read-through cache in front of another storage manager."""

from collections import Counter
from contextvars import ContextVar
from typing import Dict, Iterable, List, Optional, Sequence, Set, Type

from catalog_storage.core.cache import StorableCache
from catalog_storage.core.logging import get_logger
from catalog_storage.models.search import SearchQuery
from catalog_storage.models.storable import OrderByField, QueryParam, Storable, StorableKey
from catalog_storage.storage.manager import StorageManager
from catalog_storage.storage.transaction import TransactionIsolation

logger = get_logger(__name__)


class CacheBackedStorageManager(StorageManager):
    """Keeps a StorableCache consistent with a delegate manager.

    Writes go to the delegate first and reach the cache only afterwards,
    and only for cacheable types. Point lookups are served from the cache;
    find, search and list always go to the delegate. Keys written inside a
    transaction are remembered so a rollback can evict them.

    The cache holds its own copies: callers never get a reference to a
    cached instance, so mutating a returned record changes nothing until it
    is written. A read-through load is discarded when a write or removal of
    the same key happened while the delegate was being read.
    """

    def __init__(self, cache: StorableCache, delegate: StorageManager):
        self.cache = cache
        self.delegate = delegate
        self._written: ContextVar[Optional[Set[StorableKey]]] = ContextVar(
            f"catalog_storage_cache_written_{id(self)}", default=None
        )
        # only keys with a load in flight are tracked
        self._loading: Counter = Counter()
        self._generations: Dict[StorableKey, int] = {}

    def _invalidate_loads(self, key: StorableKey) -> None:
        if key in self._loading:
            self._generations[key] = self._generations.get(key, 0) + 1

    def _begin_load(self, key: StorableKey) -> int:
        self._loading[key] += 1
        return self._generations.get(key, 0)

    def _end_load(self, key: StorableKey, generation: int) -> bool:
        """Finish a load; True when no write touched the key meanwhile."""
        unchanged = self._generations.get(key, 0) == generation
        self._loading[key] -= 1
        if self._loading[key] <= 0:
            del self._loading[key]
            self._generations.pop(key, None)
        return unchanged

    def _after_write(self, storable: Storable) -> None:
        key = storable.get_storable_key()
        if any(value is None for value in key.primary_key.values()):
            # key assigned by the backend, not known here
            return
        self._invalidate_loads(key)
        if storable.cacheable:
            self.cache.put(key, storable.clone())
        else:
            self.cache.remove(key)
        written = self._written.get()
        if written is not None:
            written.add(key)

    async def add(self, storable: Storable) -> None:
        await self.delegate.add(storable)
        self._after_write(storable)

    async def add_or_update(self, storable: Storable) -> None:
        await self.delegate.add_or_update(storable)
        self._after_write(storable)

    async def update(self, storable: Storable) -> None:
        await self.delegate.update(storable)
        self._after_write(storable)

    async def remove(self, key: StorableKey) -> Optional[Storable]:
        old_value = await self.delegate.remove(key)
        self._invalidate_loads(key)
        cached = self.cache.remove(key)
        if old_value is not None and old_value.cacheable and cached is not None and cached != old_value:
            logger.warning("Cached value differed from the deleted row",
                           namespace=key.namespace, key=repr(key.primary_key))
        return old_value

    async def get(self, key: StorableKey) -> Optional[Storable]:
        cached = self.cache.get(key)
        if cached is not None:
            if cached.cacheable:
                return cached.clone()
            logger.warning("Evicting cached entry of a non-cacheable type",
                           namespace=key.namespace, key=repr(key.primary_key))
            self.cache.remove(key)
        generation = self._begin_load(key)
        try:
            value = await self.delegate.get(key)
        finally:
            unchanged = self._end_load(key, generation)
        if value is not None and value.cacheable:
            if unchanged:
                self.cache.put(key, value.clone())
            else:
                logger.debug("Discarding load overtaken by a write",
                             namespace=key.namespace, key=repr(key.primary_key))
        return value

    async def find(self, namespace: str, params: Optional[Iterable[QueryParam]],
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        return await self.delegate.find(namespace, params, order_by_fields)

    async def search(self, query: SearchQuery) -> List[Storable]:
        return await self.delegate.search(query)

    async def list(self, namespace: str,
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        return await self.delegate.list(namespace, order_by_fields)

    async def next_id(self, namespace: str) -> int:
        return await self.delegate.next_id(namespace)

    def register_storables(self, classes: Iterable[Type[Storable]]) -> None:
        self.delegate.register_storables(classes)

    async def cleanup(self) -> None:
        self.cache.clear()
        await self.delegate.cleanup()

    async def read_lock(self, key: StorableKey, timeout: float) -> bool:
        return await self.delegate.read_lock(key, timeout)

    async def write_lock(self, key: StorableKey, timeout: float) -> bool:
        return await self.delegate.write_lock(key, timeout)

    async def begin_transaction(self, isolation: TransactionIsolation) -> None:
        await self.delegate.begin_transaction(isolation)
        self._written.set(set())

    async def commit_transaction(self) -> None:
        try:
            await self.delegate.commit_transaction()
        except Exception:
            self._evict_written()
            raise
        self._written.set(None)

    async def rollback_transaction(self) -> None:
        try:
            await self.delegate.rollback_transaction()
        finally:
            self._evict_written()

    def _evict_written(self) -> None:
        written = self._written.get()
        self._written.set(None)
        if written:
            for key in written:
                self._invalidate_loads(key)
            self.cache.remove_all(written)
            logger.debug("Evicted keys written in the aborted transaction", count=len(written))
