"""
SQL dialects.

Each dialect supplies what differs between backends: identifier quoting,
the upsert form, row-locking read clauses, the isolation level spelling
and how to read the next auto-increment value. Everything else about
statement building is shared in ``storage.query``.

Usage:
    dialect = create_dialect(settings.dialect_name)
    dialect.quote("order")   # `order` on MySQL, "order" elsewhere
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from catalog_storage.core.exceptions import InvalidArgumentError, UnsupportedOperationError
from catalog_storage.storage.transaction import TransactionIsolation


class QueryDialect(ABC):
    """Capability interface implemented once per SQL backend."""

    name: str = ""
    identifier_quote: str = '"'
    supports_row_locks: bool = True

    def quote(self, identifier: str) -> str:
        q = self.identifier_quote
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def share_lock_clause(self) -> str:
        self._require_row_locks("select for share")
        return "FOR SHARE"

    def update_lock_clause(self) -> str:
        self._require_row_locks("select for update")
        return "FOR UPDATE"

    def _require_row_locks(self, operation: str) -> None:
        if not self.supports_row_locks:
            raise UnsupportedOperationError(
                f"The {self.name} dialect does not support row-locking reads",
                operation=operation,
            )

    def isolation_level(self, isolation: TransactionIsolation) -> Optional[str]:
        """Value for SQLAlchemy's ``isolation_level`` execution option, None to keep the default."""
        if isolation is TransactionIsolation.DEFAULT:
            return None
        return isolation.value

    @abstractmethod
    def upsert_sql(self, table: str, columns: Sequence[str],
                   key_columns: Sequence[str]) -> Tuple[str, List[int]]:
        """Build an insert-or-update statement.

        Returns:
            The parameterized SQL and, for each ``?`` placeholder in order,
            the index into ``columns`` whose value it binds.
        """

    def next_id_sql(self, table: str) -> Optional[Tuple[str, List[object]]]:
        """Native auto-increment lookup, or None when the backend has none."""
        return None


class MySqlDialect(QueryDialect):
    name = "mysql"
    identifier_quote = "`"

    def share_lock_clause(self) -> str:
        # FOR SHARE needs MySQL 8; this form works on 5.7 as well
        return "LOCK IN SHARE MODE"

    def upsert_sql(self, table, columns, key_columns):
        column_list = ", ".join(self.quote(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        bindings = list(range(len(columns)))
        update_columns = [i for i, c in enumerate(columns) if c not in key_columns] or list(range(len(columns)))
        assignments = ", ".join(f"{self.quote(columns[i])} = ?" for i in update_columns)
        bindings.extend(update_columns)
        sql = (f"INSERT INTO {self.quote(table)} ({column_list}) VALUES ({placeholders}) "
               f"ON DUPLICATE KEY UPDATE {assignments}")
        return sql, bindings

    def next_id_sql(self, table):
        return ("SELECT AUTO_INCREMENT FROM INFORMATION_SCHEMA.TABLES "
                "WHERE TABLE_NAME = ? AND TABLE_SCHEMA = DATABASE()", [table])


class _OnConflictDialect(QueryDialect):
    """Dialects with ``INSERT ... ON CONFLICT (...) DO UPDATE``."""

    def upsert_sql(self, table, columns, key_columns):
        column_list = ", ".join(self.quote(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        conflict = ", ".join(self.quote(c) for c in key_columns)
        update_columns = [c for c in columns if c not in key_columns]
        if update_columns:
            assignments = ", ".join(f"{self.quote(c)} = EXCLUDED.{self.quote(c)}" for c in update_columns)
            action = f"DO UPDATE SET {assignments}"
        else:
            action = "DO NOTHING"
        sql = (f"INSERT INTO {self.quote(table)} ({column_list}) VALUES ({placeholders}) "
               f"ON CONFLICT ({conflict}) {action}")
        return sql, list(range(len(columns)))


class PostgresqlDialect(_OnConflictDialect):
    name = "postgresql"


class SqliteDialect(_OnConflictDialect):
    name = "sqlite"
    supports_row_locks = False

    def isolation_level(self, isolation):
        # SQLite transactions are serializable; READ COMMITTED is satisfied by that
        return None


_DIALECTS = {
    "mysql": MySqlDialect,
    "postgresql": PostgresqlDialect,
    "sqlite": SqliteDialect,
}


def create_dialect(name: str) -> QueryDialect:
    """Create the dialect for a database type name."""
    try:
        return _DIALECTS[name.lower()]()
    except KeyError:
        raise InvalidArgumentError(f"Unknown database dialect '{name}'",
                                   operation="create_dialect") from None
