"""Storable records and the catalog tables built on them."""

from catalog_storage.models.storable import (
    Columns,
    FieldType,
    OrderByField,
    PrimaryKey,
    QueryParam,
    SchemaField,
    Storable,
    StorableFactory,
    StorableKey,
)
from catalog_storage.models.search import Operator, Predicate, SearchQuery
from catalog_storage.models.catalog import SchemaMetadataStorable, SchemaVersionStorable
from catalog_storage.models.events import EventStorable, EventType

CATALOG_STORABLES = (SchemaMetadataStorable, SchemaVersionStorable, EventStorable)

__all__ = [
    "CATALOG_STORABLES",
    "Columns",
    "EventStorable",
    "EventType",
    "FieldType",
    "Operator",
    "OrderByField",
    "Predicate",
    "PrimaryKey",
    "QueryParam",
    "SchemaField",
    "SchemaMetadataStorable",
    "SchemaVersionStorable",
    "SearchQuery",
    "Storable",
    "StorableFactory",
    "StorableKey",
]
