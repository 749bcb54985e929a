"""Catalog tables referenced by outbox events."""

from typing import ClassVar, Optional

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field

from catalog_storage.constants import SCHEMA_METADATA_NAMESPACE, SCHEMA_VERSION_NAMESPACE
from catalog_storage.models.storable import Storable


class SchemaMetadataStorable(Storable, table=True):
    """Schema metadata: name, type, group and compatibility policy."""

    __tablename__ = SCHEMA_METADATA_NAMESPACE

    cacheable: ClassVar[bool] = True

    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(max_length=255)
    schema_group: str = Field(max_length=255)
    name: str = Field(unique=True, max_length=255)
    compatibility: str = Field(default="BACKWARD", max_length=255)
    validation_level: str = Field(default="ALL", max_length=255)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    evolve: bool = Field(default=True)
    timestamp: int = Field(default=0)


class SchemaVersionStorable(Storable, table=True):
    """One registered version of a schema."""

    __tablename__ = SCHEMA_VERSION_NAMESPACE
    __table_args__ = (UniqueConstraint("schema_metadata_id", "version"),)

    cacheable: ClassVar[bool] = True

    id: Optional[int] = Field(default=None, primary_key=True)
    schema_metadata_id: int = Field(index=True)
    name: str = Field(max_length=255)
    version: int
    schema_text: str = Field(sa_column=Column(Text, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    fingerprint: str = Field(default="", max_length=255)
    state: int = Field(default=5)
    timestamp: int = Field(default=0)
