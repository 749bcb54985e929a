"""Storable record model and its identity vocabulary.

A Storable is a versionless record living in one namespace (a table). Its
identity is a StorableKey: the namespace plus a PrimaryKey, which maps
typed SchemaField descriptors to values. QueryParams are the untyped
filters callers send in; they only become a key after being resolved
against the table's Columns.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Type

from sqlalchemy import inspect as sa_inspect
from sqlmodel import SQLModel

from catalog_storage.core.exceptions import StorageError


class FieldType(str, Enum):
    """Declared type of a column, as far as query resolution cares."""
    BOOLEAN = "boolean"
    LONG = "long"
    DOUBLE = "double"
    STRING = "string"
    BINARY = "binary"
    DATETIME = "datetime"

    @classmethod
    def from_python_type(cls, python_type: type) -> "FieldType":
        # bool is a subclass of int, check it first
        if issubclass(python_type, bool):
            return cls.BOOLEAN
        if issubclass(python_type, int):
            return cls.LONG
        if issubclass(python_type, (float, Decimal)):
            return cls.DOUBLE
        if issubclass(python_type, (bytes, bytearray)):
            return cls.BINARY
        if issubclass(python_type, datetime):
            return cls.DATETIME
        return cls.STRING

    @classmethod
    def from_sql_type(cls, sql_type: Any) -> "FieldType":
        """Map a SQLAlchemy column type, falling back to STRING for exotic types."""
        try:
            python_type = sql_type.python_type
        except NotImplementedError:
            return cls.STRING
        return cls.from_python_type(python_type)

    def parse(self, value: str) -> Any:
        """Convert a raw string value to this type.

        Raises:
            ValueError: if the string is not a valid literal of this type
        """
        if self is FieldType.BOOLEAN:
            lowered = value.strip().lower()
            if lowered in ("true", "1"):
                return True
            if lowered in ("false", "0"):
                return False
            raise ValueError(f"'{value}' is not a boolean")
        if self is FieldType.LONG:
            return int(value)
        if self is FieldType.DOUBLE:
            return float(value)
        if self is FieldType.BINARY:
            return value.encode("utf-8")
        if self is FieldType.DATETIME:
            return datetime.fromisoformat(value)
        return value


@dataclass(frozen=True)
class SchemaField:
    """Typed field descriptor: column name plus declared type."""
    name: str
    type: FieldType


class PrimaryKey:
    """Ordered mapping of typed fields to values.

    Field order is kept for SQL generation; equality and hashing ignore it,
    so two keys naming the same fields and values identify the same row.
    """

    __slots__ = ("_items",)

    def __init__(self, fields_to_values: Mapping[SchemaField, Any]):
        self._items: Tuple[Tuple[SchemaField, Any], ...] = tuple(fields_to_values.items())

    @property
    def field_values(self) -> Dict[SchemaField, Any]:
        return dict(self._items)

    def fields(self) -> List[SchemaField]:
        return [field for field, _ in self._items]

    def values(self) -> List[Any]:
        return [value for _, value in self._items]

    def __iter__(self) -> Iterator[Tuple[SchemaField, Any]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrimaryKey):
            return NotImplemented
        return dict(self._items) == dict(other._items)

    def __hash__(self) -> int:
        return hash(frozenset(self._items))

    def __repr__(self) -> str:
        pairs = ", ".join(f"{field.name}={value!r}" for field, value in self._items)
        return f"PrimaryKey({pairs})"


@dataclass(frozen=True)
class StorableKey:
    """Identity of a Storable: namespace plus primary key."""
    namespace: str
    primary_key: PrimaryKey


@dataclass(frozen=True)
class QueryParam:
    """Untyped filter criterion, e.g. from a request query string."""
    name: str
    value: str


@dataclass(frozen=True)
class OrderByField:
    """Result ordering on one field. Never part of identity."""
    field_name: str
    descending: bool = False

    @classmethod
    def of(cls, field_name: str, descending: bool = False) -> "OrderByField":
        return cls(field_name, descending)

    @classmethod
    def asc(cls, field_name: str) -> "OrderByField":
        return cls(field_name, False)

    @classmethod
    def desc(cls, field_name: str) -> "OrderByField":
        return cls(field_name, True)


class Columns:
    """Column names and declared types of one table."""

    def __init__(self, fields: Iterable[SchemaField]):
        self._types: Dict[str, FieldType] = {field.name: field.type for field in fields}

    def get_type(self, name: str) -> Optional[FieldType]:
        return self._types.get(name)

    def names(self) -> List[str]:
        return list(self._types)

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __len__(self) -> int:
        return len(self._types)


class Storable(SQLModel):
    """Base class for catalog records.

    Subclasses are SQLModel tables; the table name is the namespace. The
    ``cacheable`` class flag decides whether the cache-backed storage
    manager may keep instances of the type in its cache.
    """

    cacheable: ClassVar[bool] = True

    @classmethod
    def get_namespace(cls) -> str:
        return cls.__tablename__

    @classmethod
    def column_names(cls) -> Dict[str, str]:
        """Attribute name -> column name."""
        return {prop.key: prop.columns[0].name for prop in sa_inspect(cls).column_attrs}

    @classmethod
    def schema_fields(cls) -> List[SchemaField]:
        return [SchemaField(column.name, FieldType.from_sql_type(column.type))
                for column in cls.__table__.columns]

    @classmethod
    def columns(cls) -> Columns:
        return Columns(cls.schema_fields())

    def get_primary_key(self) -> PrimaryKey:
        mapper = sa_inspect(type(self))
        fields_to_values: Dict[SchemaField, Any] = {}
        for column in self.__table__.primary_key.columns:
            attribute = mapper.get_property_by_column(column).key
            field = SchemaField(column.name, FieldType.from_sql_type(column.type))
            fields_to_values[field] = getattr(self, attribute)
        return PrimaryKey(fields_to_values)

    def get_storable_key(self) -> StorableKey:
        return StorableKey(self.get_namespace(), self.get_primary_key())

    @classmethod
    def key_of(cls, **values: Any) -> StorableKey:
        """StorableKey in this namespace from column values, e.g. ``key_of(id=3)``."""
        types = {field.name: field.type for field in cls.schema_fields()}
        return StorableKey(cls.get_namespace(), PrimaryKey({
            SchemaField(name, types.get(name, FieldType.STRING)): value for name, value in values.items()
        }))

    def to_map(self) -> Dict[str, Any]:
        """Column name -> value."""
        columns = self.column_names()
        return {columns.get(name, name): value for name, value in self.model_dump().items()}

    @classmethod
    def from_map(cls, row: Mapping[str, Any]) -> "Storable":
        attributes = {column: attribute for attribute, column in cls.column_names().items()}
        return cls.model_validate({attributes.get(name, name): value for name, value in row.items()})

    def clone(self) -> "Storable":
        """Detached copy; mutating it leaves this instance untouched."""
        return type(self).from_map(self.to_map())

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return False
        return self.to_map() == other.to_map()


class StorableFactory:
    """Registry from namespace to Storable class, used to materialise rows."""

    def __init__(self):
        self._classes: Dict[str, Type[Storable]] = {}

    def add_storable_classes(self, classes: Iterable[Type[Storable]]) -> None:
        for storable_class in classes:
            self._classes[storable_class.get_namespace()] = storable_class

    def get_storable_class(self, namespace: str) -> Type[Storable]:
        try:
            return self._classes[namespace]
        except KeyError:
            raise StorageError(f"No storable registered for namespace '{namespace}'",
                               operation="create") from None

    def create(self, namespace: str, row: Mapping[str, Any]) -> Storable:
        return self.get_storable_class(namespace).from_map(row)

    def namespaces(self) -> List[str]:
        return list(self._classes)

    def is_registered(self, namespace: str) -> bool:
        return namespace in self._classes
