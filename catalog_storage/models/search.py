"""Search queries: conjunctive filters, ordering and row locking."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, List

from catalog_storage.models.storable import OrderByField


class Operator(str, Enum):
    """Comparison operators supported in a search predicate."""
    EQ = "="
    NE = "<>"
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    CONTAINS = "LIKE"


@dataclass(frozen=True)
class Predicate:
    """One ``field <op> value`` condition."""
    field_name: str
    operator: Operator
    value: Any

    def matches(self, actual: Any) -> bool:
        """Evaluate the predicate in memory against a column value."""
        if self.operator is Operator.EQ:
            return actual == self.value
        if self.operator is Operator.NE:
            return actual != self.value
        if self.operator is Operator.CONTAINS:
            return actual is not None and str(self.value) in str(actual)
        if actual is None:
            return False
        if self.operator is Operator.LT:
            return actual < self.value
        if self.operator is Operator.LTE:
            return actual <= self.value
        if self.operator is Operator.GT:
            return actual > self.value
        return actual >= self.value


class SearchQuery:
    """Filter/sort query over one namespace.

    All predicates are combined with AND. ``for_update`` asks the executor
    for a row-locking read, which only holds inside a transaction.

    Example:
        query = (SearchQuery.search_from("atlas_events")
                 .where_eq("processed", False)
                 .where_eq("failed", False)
                 .order_by(OrderByField.asc("id"))
                 .for_update())
    """

    def __init__(self, namespace: str):
        self.namespace = namespace
        self.predicates: List[Predicate] = []
        self.order_by_fields: List[OrderByField] = []
        self.lock_for_update = False

    @classmethod
    def search_from(cls, namespace: str) -> "SearchQuery":
        return cls(namespace)

    def where(self, field_name: str, operator: Operator, value: Any) -> "SearchQuery":
        self.predicates.append(Predicate(field_name, Operator(operator), value))
        return self

    def where_eq(self, field_name: str, value: Any) -> "SearchQuery":
        return self.where(field_name, Operator.EQ, value)

    def where_contains(self, field_name: str, value: str) -> "SearchQuery":
        return self.where(field_name, Operator.CONTAINS, value)

    def order_by(self, *fields: OrderByField) -> "SearchQuery":
        self.order_by_fields.extend(fields)
        return self

    def for_update(self) -> "SearchQuery":
        self.lock_for_update = True
        return self

    def __repr__(self) -> str:
        return (f"SearchQuery(namespace={self.namespace!r}, predicates={self.predicates!r}, "
                f"order_by={self.order_by_fields!r}, for_update={self.lock_for_update})")
