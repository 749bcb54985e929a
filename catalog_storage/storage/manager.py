"""Storage manager contract and the helpers its implementations share."""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Type

from catalog_storage.core.exceptions import IllegalQueryParameterError, InvalidArgumentError
from catalog_storage.core.logging import get_logger
from catalog_storage.models.search import SearchQuery
from catalog_storage.models.storable import (
    Columns,
    OrderByField,
    PrimaryKey,
    QueryParam,
    SchemaField,
    Storable,
    StorableKey,
)
from catalog_storage.storage.transaction import TransactionIsolation

logger = get_logger(__name__)


class StorageManager(ABC):
    """CRUD, query, lock and transaction contract over Storables.

    Every implementation keeps the same semantics: ``add`` never turns into
    an update, ``remove`` returns what it deleted, ``find`` with no usable
    parameters lists the whole namespace.
    """

    @abstractmethod
    async def add(self, storable: Storable) -> None:
        """Insert a new record.

        Raises:
            AlreadyExistsError: if a unique constraint is violated
        """

    @abstractmethod
    async def remove(self, key: StorableKey) -> Optional[Storable]:
        """Delete the record under ``key`` and return it, or None if absent."""

    @abstractmethod
    async def add_or_update(self, storable: Storable) -> None:
        """Insert, or overwrite the record with the same key."""

    @abstractmethod
    async def update(self, storable: Storable) -> None:
        """Overwrite an existing record; a missing row is left missing."""

    @abstractmethod
    async def get(self, key: StorableKey) -> Optional[Storable]:
        """Point lookup."""

    @abstractmethod
    async def find(self, namespace: str, params: Optional[Iterable[QueryParam]],
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        """Records matching ``params`` resolved against the table's columns.

        When none of the params name a real column the whole namespace is
        listed instead.
        """

    @abstractmethod
    async def search(self, query: SearchQuery) -> List[Storable]:
        """Records matching a SearchQuery."""

    @abstractmethod
    async def list(self, namespace: str,
                   order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        """All records of a namespace."""

    @abstractmethod
    async def next_id(self, namespace: str) -> int:
        """Next auto-increment id for the namespace."""

    @abstractmethod
    def register_storables(self, classes: Iterable[Type[Storable]]) -> None:
        """Make Storable classes known so rows can be materialised."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release cached metadata and other per-manager state."""

    @abstractmethod
    async def read_lock(self, key: StorableKey, timeout: float) -> bool:
        """Poll for a shared row lock for at most ``timeout`` seconds."""

    @abstractmethod
    async def write_lock(self, key: StorableKey, timeout: float) -> bool:
        """Poll for an exclusive row lock for at most ``timeout`` seconds."""

    @abstractmethod
    async def begin_transaction(self, isolation: TransactionIsolation) -> None:
        pass

    @abstractmethod
    async def commit_transaction(self) -> None:
        pass

    @abstractmethod
    async def rollback_transaction(self) -> None:
        pass


async def poll_for_lock(
    acquire: Callable[[], Awaitable[bool]],
    timeout: float,
    poll_interval: float,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Retry ``acquire`` until it returns True or ``timeout`` seconds pass.

    Always tries at least once, so a zero timeout is a single attempt.

    Raises:
        InvalidArgumentError: if timeout is negative
    """
    if timeout < 0:
        raise InvalidArgumentError(f"Lock timeout must not be negative, got {timeout}",
                                   operation="lock")
    deadline = clock() + timeout
    while True:
        if await acquire():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(poll_interval, remaining))


def resolve_query_params(namespace: str, params: Optional[Iterable[QueryParam]],
                         columns: Columns) -> Optional[PrimaryKey]:
    """Turn untyped params into a typed PrimaryKey.

    Params naming unknown columns are logged and dropped. Returns None when
    nothing is left.

    Raises:
        IllegalQueryParameterError: if a value does not parse as its column's type
    """
    fields_to_values: Dict[SchemaField, object] = {}
    for param in params or ():
        field_type = columns.get_type(param.name)
        if field_type is None:
            logger.warning("Query parameter does not match a column, ignored",
                           namespace=namespace, param=param.name)
            continue
        try:
            value = field_type.parse(param.value)
        except ValueError as e:
            raise IllegalQueryParameterError(
                f"Value '{param.value}' of '{param.name}' is not a valid {field_type.value}",
                operation="find",
                details={"namespace": namespace},
            ) from e
        fields_to_values[SchemaField(param.name, field_type)] = value
    if not fields_to_values:
        return None
    return PrimaryKey(fields_to_values)
