"""Boundary of the external metadata graph the events processor replays into.

The host application supplies the implementation and overrides the
container's ``metadata_sink`` dependency with it.

Usage:
    container.metadata_sink.override(providers.Object(AtlasClientSink(...)))
"""

from typing import Optional, Protocol

from catalog_storage.models.catalog import SchemaMetadataStorable, SchemaVersionStorable


class MetadataSinkProtocol(Protocol):
    """Operations the events processor needs from the metadata graph."""

    async def create_meta(self, meta: SchemaMetadataStorable) -> Optional[str]:
        """Create the schema entity; returns its external id, or None."""
        ...

    async def update_meta(self, meta: SchemaMetadataStorable) -> None:
        ...

    async def add_version(self, schema_name: str, version: SchemaVersionStorable) -> None:
        ...

    async def is_topic_model_initialized(self) -> bool:
        """Whether the external model can link schemas to topics."""
        ...

    async def connect_to_external_topic(self, external_id: str, meta: SchemaMetadataStorable) -> None:
        ...
