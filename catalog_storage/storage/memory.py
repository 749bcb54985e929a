"""Dict-backed storage manager for tests and embedded use."""

from typing import Dict, Iterable, List, Optional, Sequence, Type

from catalog_storage.constants import DEFAULT_LOCK_POLL_INTERVAL, ID
from catalog_storage.core.exceptions import AlreadyExistsError
from catalog_storage.core.logging import get_logger
from catalog_storage.models.search import SearchQuery
from catalog_storage.models.storable import (
    OrderByField,
    PrimaryKey,
    QueryParam,
    Storable,
    StorableFactory,
    StorableKey,
)
from catalog_storage.storage.manager import StorageManager, poll_for_lock, resolve_query_params
from catalog_storage.storage.transaction import TransactionIsolation

logger = get_logger(__name__)


def _sort_key(column: str):
    # None sorts before any value, like NULLS FIRST
    def key(storable: Storable):
        value = storable.to_map().get(column)
        return (value is not None, value)
    return key


def _ordered(storables: List[Storable],
             order_by_fields: Optional[Sequence[OrderByField]]) -> List[Storable]:
    # stable sorts applied last-field-first compose into a multi-key order
    for field in reversed(order_by_fields or ()):
        storables.sort(key=_sort_key(field.field_name), reverse=field.descending)
    return storables


class InMemoryStorageManager(StorageManager):
    """Keeps every namespace in a dict keyed by PrimaryKey.

    Records are copied on the way in and out, so callers mutating what
    they got back do not change stored state until they write it. Locks
    succeed whenever the key exists; transactions are accepted and ignored.
    """

    def __init__(self, storable_factory: Optional[StorableFactory] = None,
                 lock_poll_interval: float = DEFAULT_LOCK_POLL_INTERVAL):
        self.storable_factory = storable_factory or StorableFactory()
        self.lock_poll_interval = lock_poll_interval
        self._storage: Dict[str, Dict[PrimaryKey, Storable]] = {}

    def _namespace(self, namespace: str) -> Dict[PrimaryKey, Storable]:
        return self._storage.setdefault(namespace, {})

    def _assign_id(self, storable: Storable) -> None:
        if ID in type(storable).model_fields and getattr(storable, ID) is None:
            setattr(storable, ID, self._next_id_sync(storable.get_namespace()))

    def _next_id_sync(self, namespace: str) -> int:
        ids = [storable.to_map().get(ID) for storable in self._namespace(namespace).values()]
        return max((i for i in ids if i is not None), default=0) + 1

    async def add(self, storable: Storable) -> None:
        self._assign_id(storable)
        rows = self._namespace(storable.get_namespace())
        primary_key = storable.get_primary_key()
        if primary_key in rows:
            raise AlreadyExistsError("Entry already exists", operation="add",
                                     details={"namespace": storable.get_namespace(),
                                              "key": repr(primary_key)})
        rows[primary_key] = storable.clone()

    async def remove(self, key: StorableKey) -> Optional[Storable]:
        return self._namespace(key.namespace).pop(key.primary_key, None)

    async def add_or_update(self, storable: Storable) -> None:
        self._assign_id(storable)
        self._namespace(storable.get_namespace())[storable.get_primary_key()] = storable.clone()

    async def update(self, storable: Storable) -> None:
        rows = self._namespace(storable.get_namespace())
        primary_key = storable.get_primary_key()
        if primary_key in rows:
            rows[primary_key] = storable.clone()
        else:
            logger.debug("Update matched no rows", namespace=storable.get_namespace())

    async def get(self, key: StorableKey) -> Optional[Storable]:
        storable = self._namespace(key.namespace).get(key.primary_key)
        return storable.clone() if storable is not None else None

    async def find(self, namespace: str, params: Optional[Iterable[QueryParam]],
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        columns = self.storable_factory.get_storable_class(namespace).columns()
        primary_key = resolve_query_params(namespace, params, columns)
        if primary_key is None:
            return await self.list(namespace, order_by_fields)
        matches = [
            storable.clone() for storable in self._namespace(namespace).values()
            if all(storable.to_map().get(field.name) == value for field, value in primary_key)
        ]
        return _ordered(matches, order_by_fields)

    async def search(self, query: SearchQuery) -> List[Storable]:
        matches = []
        for storable in self._namespace(query.namespace).values():
            values = storable.to_map()
            if all(predicate.matches(values.get(predicate.field_name)) for predicate in query.predicates):
                matches.append(storable.clone())
        return _ordered(matches, query.order_by_fields)

    async def list(self, namespace: str,
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        storables = [storable.clone() for storable in self._namespace(namespace).values()]
        return _ordered(storables, order_by_fields)

    async def next_id(self, namespace: str) -> int:
        return self._next_id_sync(namespace)

    def register_storables(self, classes: Iterable[Type[Storable]]) -> None:
        self.storable_factory.add_storable_classes(classes)

    async def cleanup(self) -> None:
        self._storage.clear()

    async def read_lock(self, key: StorableKey, timeout: float) -> bool:
        async def acquire() -> bool:
            return key.primary_key in self._namespace(key.namespace)

        return await poll_for_lock(acquire, timeout, self.lock_poll_interval)

    async def write_lock(self, key: StorableKey, timeout: float) -> bool:
        return await self.read_lock(key, timeout)

    async def begin_transaction(self, isolation: TransactionIsolation) -> None:
        pass

    async def commit_transaction(self) -> None:
        pass

    async def rollback_transaction(self) -> None:
        pass
