"""Query executor: runs dialect-built SQL against the async engine.

The executor is the only place that touches SQLAlchemy connections. Outside
a transaction every statement runs in its own short transaction; after
``begin_transaction`` all statements issued from the same asyncio task
share one connection until commit or rollback.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import inspect as sa_inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from catalog_storage.constants import ID
from catalog_storage.core.database import Database
from catalog_storage.core.exceptions import (
    AlreadyExistsError,
    IllegalQueryParameterError,
    InvalidArgumentError,
    StorageError,
)
from catalog_storage.core.logging import get_logger
from catalog_storage.models.search import SearchQuery
from catalog_storage.models.storable import (
    Columns,
    FieldType,
    OrderByField,
    PrimaryKey,
    SchemaField,
    Storable,
    StorableFactory,
    StorableKey,
)
from catalog_storage.storage.dialects import QueryDialect
from catalog_storage.storage.query import RowLock, SqlQuery, SqlQueryBuilder
from catalog_storage.storage.transaction import TransactionIsolation

logger = get_logger(__name__)


class QueryExecutor:
    """Builds and executes statements for one database and dialect."""

    def __init__(self, database: Database, dialect: QueryDialect,
                 storable_factory: StorableFactory):
        self.database = database
        self.dialect = dialect
        self.storable_factory = storable_factory
        self.builder = SqlQueryBuilder(dialect)
        self._columns: Dict[str, Columns] = {}
        self._transaction: ContextVar[Optional[AsyncConnection]] = ContextVar(
            f"catalog_storage_transaction_{id(self)}", default=None
        )

    # =========================================================================
    # Transactions
    # =========================================================================

    @property
    def in_transaction(self) -> bool:
        return self._transaction.get() is not None

    async def begin_transaction(self, isolation: TransactionIsolation) -> None:
        if self._transaction.get() is not None:
            raise StorageError("A transaction is already active in this task",
                               operation="begin_transaction")
        try:
            connection = await self.database.connect()
        except SQLAlchemyError as e:
            raise StorageError("Could not open a connection", operation="begin_transaction") from e
        try:
            level = self.dialect.isolation_level(isolation)
            if level:
                await connection.execution_options(isolation_level=level)
            await connection.begin()
        except SQLAlchemyError as e:
            await connection.close()
            raise StorageError("Could not begin transaction", operation="begin_transaction",
                               details={"isolation": isolation.value}) from e
        self._transaction.set(connection)
        logger.debug("Transaction started", isolation=isolation.value)

    async def commit_transaction(self) -> None:
        connection = self._transaction.get()
        if connection is None:
            raise StorageError("No active transaction to commit", operation="commit_transaction")
        try:
            await connection.commit()
        except SQLAlchemyError as e:
            await self._discard(connection)
            raise StorageError("Commit failed", operation="commit_transaction") from e
        finally:
            self._transaction.set(None)
        await connection.close()
        logger.debug("Transaction committed")

    async def rollback_transaction(self) -> None:
        """Roll back, leaving no failed transaction state on a pooled connection.

        If the rollback itself fails the connection is invalidated, so the
        pool replaces it instead of handing it out again.
        """
        connection = self._transaction.get()
        if connection is None:
            logger.debug("Rollback requested without an active transaction")
            return
        self._transaction.set(None)
        try:
            await connection.rollback()
        except SQLAlchemyError as e:
            logger.warning("Rollback failed, discarding connection", error=str(e))
            await self._discard(connection)
            return
        await connection.close()
        logger.debug("Transaction rolled back")

    async def _discard(self, connection: AsyncConnection) -> None:
        try:
            await connection.invalidate()
        finally:
            await connection.close()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[AsyncConnection]:
        connection = self._transaction.get()
        if connection is not None:
            yield connection
        else:
            async with self.database.begin() as connection:
                yield connection

    # =========================================================================
    # Execution
    # =========================================================================

    async def _execute(self, query: SqlQuery, operation: str, fetch: bool = False) -> Any:
        sql, params = query.named()
        logger.debug("Executing statement", operation=operation, sql=query.sql)
        try:
            async with self._connection() as connection:
                result = await connection.execute(text(sql), params)
                if fetch:
                    return [dict(row) for row in result.mappings().all()]
                return result.rowcount
        except IntegrityError as e:
            if operation == "insert":
                raise AlreadyExistsError("Entry already exists", operation=operation,
                                         details={"sql": query.sql}) from e
            raise StorageError(str(e.orig), operation=operation, details={"sql": query.sql}) from e
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation=operation, details={"sql": query.sql}) from e

    async def _fetch_storables(self, namespace: str, query: SqlQuery,
                               operation: str) -> List[Storable]:
        rows = await self._execute(query, operation, fetch=True)
        return [self.storable_factory.create(namespace, row) for row in rows]

    async def _fetch_scalar(self, query: SqlQuery, operation: str) -> Any:
        rows = await self._execute(query, operation, fetch=True)
        if not rows:
            return None
        return next(iter(rows[0].values()), None)

    # =========================================================================
    # Column metadata
    # =========================================================================

    def _require_registered(self, namespace: str, operation: str) -> None:
        """Reject namespaces with no registered Storable before any SQL is built."""
        if not self.storable_factory.is_registered(namespace):
            raise InvalidArgumentError(f"Unknown namespace '{namespace}'", operation=operation,
                                       details={"registered": self.storable_factory.namespaces()})

    async def get_columns(self, namespace: str) -> Columns:
        """Column names and declared types of a table, cached per namespace."""
        self._require_registered(namespace, "get_columns")
        columns = self._columns.get(namespace)
        if columns is not None:
            return columns
        try:
            async with self._connection() as connection:
                reflected = await connection.run_sync(
                    lambda sync_conn: sa_inspect(sync_conn).get_columns(namespace)
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read columns of '{namespace}'",
                               operation="get_columns") from e
        columns = Columns(SchemaField(column["name"], FieldType.from_sql_type(column["type"]))
                          for column in reflected)
        self._columns[namespace] = columns
        return columns

    async def resolve_primary_key(self, key: StorableKey) -> PrimaryKey:
        """Drop key fields that are not real columns; fail if none remain."""
        columns = await self.get_columns(key.namespace)
        known = {}
        for field, value in key.primary_key:
            if field.name in columns:
                known[field] = value
            else:
                logger.warning("Key field does not exist, ignored",
                               namespace=key.namespace, field=field.name)
        if not known:
            raise IllegalQueryParameterError(
                "None of the key fields match a column",
                operation="resolve_primary_key",
                details={"namespace": key.namespace, "key": repr(key.primary_key)},
            )
        return PrimaryKey(known)

    # =========================================================================
    # Statements
    # =========================================================================

    async def insert(self, storable: Storable) -> None:
        values = {column: value for column, value in storable.to_map().items() if value is not None}
        await self._execute(self.builder.insert(storable.get_namespace(), values), "insert")

    async def insert_or_update(self, storable: Storable) -> None:
        primary_key = storable.get_primary_key()
        if any(value is None for value in primary_key.values()):
            # no key yet, nothing to conflict with
            await self.insert(storable)
            return
        query = self.builder.upsert(storable.get_namespace(), storable.to_map(),
                                    [field.name for field in primary_key.fields()])
        await self._execute(query, "insert_or_update")

    async def update(self, storable: Storable) -> int:
        query = self.builder.update(storable.get_namespace(), storable.to_map(),
                                    storable.get_primary_key())
        if query is None:
            return 0
        return await self._execute(query, "update")

    async def delete(self, key: StorableKey) -> int:
        primary_key = await self.resolve_primary_key(key)
        return await self._execute(self.builder.delete(StorableKey(key.namespace, primary_key)), "delete")

    async def select(self, key: StorableKey,
                     order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        primary_key = await self.resolve_primary_key(key)
        query = self.builder.select(key.namespace, primary_key, order_by_fields)
        return await self._fetch_storables(key.namespace, query, "select")

    async def select_all(self, namespace: str,
                         order_by_fields: Optional[Sequence[OrderByField]] = None) -> List[Storable]:
        self._require_registered(namespace, "select")
        query = self.builder.select(namespace, None, order_by_fields)
        return await self._fetch_storables(namespace, query, "select")

    async def select_for_share(self, key: StorableKey) -> List[Storable]:
        primary_key = await self.resolve_primary_key(key)
        query = self.builder.select(key.namespace, primary_key, lock=RowLock.SHARE)
        return await self._fetch_storables(key.namespace, query, "select_for_share")

    async def select_for_update(self, key: StorableKey) -> List[Storable]:
        primary_key = await self.resolve_primary_key(key)
        query = self.builder.select(key.namespace, primary_key, lock=RowLock.UPDATE)
        return await self._fetch_storables(key.namespace, query, "select_for_update")

    async def search(self, search_query: SearchQuery) -> List[Storable]:
        self._require_registered(search_query.namespace, "search")
        query = self.builder.search(search_query)
        return await self._fetch_storables(search_query.namespace, query, "search")

    async def aggregate(self, namespace: str, field_name: str, function: str,
                        key: Optional[StorableKey] = None) -> Any:
        self._require_registered(namespace, "aggregate")
        primary_key = key.primary_key if key is not None else None
        query = self.builder.aggregate(namespace, field_name, function, primary_key)
        return await self._fetch_scalar(query, "aggregate")

    async def next_id(self, namespace: str) -> int:
        self._require_registered(namespace, "next_id")
        native = self.dialect.next_id_sql(namespace)
        if native is not None:
            sql, bindings = native
            value = await self._fetch_scalar(SqlQuery(sql, tuple(bindings)), "next_id")
            if value is not None:
                return int(value)
        current = await self.aggregate(namespace, ID, "MAX")
        return int(current or 0) + 1

    async def cleanup(self) -> None:
        self._columns.clear()
