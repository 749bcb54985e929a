"""Dialect-aware SQL statement building.

Statements are built with ``?`` placeholders and a positional binding
list. The executor converts them to SQLAlchemy named binds right before
execution, so what is built here is exactly what gets logged and tested.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from catalog_storage.core.exceptions import InvalidArgumentError, StorageError
from catalog_storage.models.search import Operator, SearchQuery
from catalog_storage.models.storable import OrderByField, PrimaryKey, StorableKey
from catalog_storage.storage.dialects import QueryDialect

AGGREGATE_FUNCTIONS = frozenset(["COUNT", "MAX", "MIN", "SUM", "AVG"])


class RowLock(str, Enum):
    NONE = "none"
    SHARE = "share"
    UPDATE = "update"


@dataclass(frozen=True)
class SqlQuery:
    """Parameterized SQL plus its positional bindings."""
    sql: str
    bindings: Tuple[Any, ...] = ()

    def named(self) -> Tuple[str, Dict[str, Any]]:
        """Rewrite ``?`` placeholders as ``:p0, :p1, ...`` for ``sqlalchemy.text``."""
        parts = self.sql.split("?")
        if len(parts) - 1 != len(self.bindings):
            raise StorageError(
                f"Statement has {len(parts) - 1} placeholders but {len(self.bindings)} bindings",
                operation="bind",
                details={"sql": self.sql},
            )
        sql = parts[0] + "".join(f":p{i}{part}" for i, part in enumerate(parts[1:]))
        return sql, {f"p{i}": value for i, value in enumerate(self.bindings)}


class SqlQueryBuilder:
    """Shared statement builder; per-backend syntax comes from the dialect."""

    def __init__(self, dialect: QueryDialect):
        self.dialect = dialect

    # =========================================================================
    # Clause helpers
    # =========================================================================

    def _where(self, primary_key: Optional[PrimaryKey]) -> Tuple[str, List[Any]]:
        if primary_key is None or len(primary_key) == 0:
            return "", []
        clauses = [f"{self.dialect.quote(field.name)} = ?" for field in primary_key.fields()]
        return " WHERE " + " AND ".join(clauses), primary_key.values()

    def _order_by(self, order_by_fields: Optional[Sequence[OrderByField]]) -> str:
        if not order_by_fields:
            return ""
        parts = [f"{self.dialect.quote(field.field_name)} {'DESC' if field.descending else 'ASC'}"
                 for field in order_by_fields]
        return " ORDER BY " + ", ".join(parts)

    def _lock(self, lock: RowLock) -> str:
        if lock is RowLock.SHARE:
            return " " + self.dialect.share_lock_clause()
        if lock is RowLock.UPDATE:
            return " " + self.dialect.update_lock_clause()
        return ""

    # =========================================================================
    # Statements
    # =========================================================================

    def insert(self, namespace: str, values: Mapping[str, Any]) -> SqlQuery:
        if not values:
            raise InvalidArgumentError("Nothing to insert", operation="insert",
                                       details={"namespace": namespace})
        columns = list(values)
        column_list = ", ".join(self.dialect.quote(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {self.dialect.quote(namespace)} ({column_list}) VALUES ({placeholders})"
        return SqlQuery(sql, tuple(values[c] for c in columns))

    def upsert(self, namespace: str, values: Mapping[str, Any],
               key_columns: Sequence[str]) -> SqlQuery:
        columns = list(values)
        sql, binding_indexes = self.dialect.upsert_sql(namespace, columns, key_columns)
        return SqlQuery(sql, tuple(values[columns[i]] for i in binding_indexes))

    def update(self, namespace: str, values: Mapping[str, Any],
               primary_key: PrimaryKey) -> Optional[SqlQuery]:
        """UPDATE of every non-key column; None when there is nothing to set."""
        key_names = {field.name for field in primary_key.fields()}
        columns = [c for c in values if c not in key_names]
        if not columns:
            return None
        assignments = ", ".join(f"{self.dialect.quote(c)} = ?" for c in columns)
        where, where_bindings = self._where(primary_key)
        if not where:
            raise InvalidArgumentError("Update requires a primary key", operation="update",
                                       details={"namespace": namespace})
        sql = f"UPDATE {self.dialect.quote(namespace)} SET {assignments}{where}"
        return SqlQuery(sql, tuple(values[c] for c in columns) + tuple(where_bindings))

    def delete(self, key: StorableKey) -> SqlQuery:
        where, bindings = self._where(key.primary_key)
        if not where:
            raise InvalidArgumentError("Delete requires a primary key", operation="delete",
                                       details={"namespace": key.namespace})
        return SqlQuery(f"DELETE FROM {self.dialect.quote(key.namespace)}{where}", tuple(bindings))

    def select(self, namespace: str, primary_key: Optional[PrimaryKey] = None,
               order_by_fields: Optional[Sequence[OrderByField]] = None,
               lock: RowLock = RowLock.NONE) -> SqlQuery:
        where, bindings = self._where(primary_key)
        sql = f"SELECT * FROM {namespace}{where}{self._order_by(order_by_fields)}{self._lock(lock)}"
        return SqlQuery(sql, tuple(bindings))

    def search(self, query: SearchQuery) -> SqlQuery:
        clauses: List[str] = []
        bindings: List[Any] = []
        for predicate in query.predicates:
            column = self.dialect.quote(predicate.field_name)
            if predicate.value is None and predicate.operator in (Operator.EQ, Operator.NE):
                clauses.append(f"{column} IS {'NOT ' if predicate.operator is Operator.NE else ''}NULL")
            elif predicate.operator is Operator.CONTAINS:
                clauses.append(f"{column} LIKE ?")
                bindings.append(f"%{predicate.value}%")
            else:
                clauses.append(f"{column} {predicate.operator.value} ?")
                bindings.append(predicate.value)
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        lock = RowLock.UPDATE if query.lock_for_update else RowLock.NONE
        sql = (f"SELECT * FROM {query.namespace}{where}"
               f"{self._order_by(query.order_by_fields)}{self._lock(lock)}")
        return SqlQuery(sql, tuple(bindings))

    def aggregate(self, namespace: str, field_name: str, function: str,
                  primary_key: Optional[PrimaryKey] = None) -> SqlQuery:
        function = function.upper()
        if function not in AGGREGATE_FUNCTIONS:
            raise InvalidArgumentError(f"Unsupported aggregate function '{function}'",
                                       operation="aggregate")
        where, bindings = self._where(primary_key)
        sql = f"SELECT {function}({self.dialect.quote(field_name)}) FROM {namespace}{where}"
        return SqlQuery(sql, tuple(bindings))
