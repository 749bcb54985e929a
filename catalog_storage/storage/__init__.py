"""Storage managers, the query executor and SQL dialects."""

from catalog_storage.storage.cached_manager import CacheBackedStorageManager
from catalog_storage.storage.dialects import (
    MySqlDialect,
    PostgresqlDialect,
    QueryDialect,
    SqliteDialect,
    create_dialect,
)
from catalog_storage.storage.executor import QueryExecutor
from catalog_storage.storage.manager import StorageManager
from catalog_storage.storage.memory import InMemoryStorageManager
from catalog_storage.storage.query import SqlQuery, SqlQueryBuilder
from catalog_storage.storage.sql_manager import SqlStorageManager
from catalog_storage.storage.transaction import TransactionIsolation, managed_transaction

__all__ = [
    "CacheBackedStorageManager",
    "InMemoryStorageManager",
    "MySqlDialect",
    "PostgresqlDialect",
    "QueryDialect",
    "QueryExecutor",
    "SqlQuery",
    "SqlQueryBuilder",
    "SqliteDialect",
    "SqlStorageManager",
    "StorageManager",
    "TransactionIsolation",
    "create_dialect",
    "managed_transaction",
]
