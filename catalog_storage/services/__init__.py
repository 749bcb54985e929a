"""Background services built on the storage core."""

from catalog_storage.services.events_processor import EventsProcessor
from catalog_storage.services.metadata_sink import MetadataSinkProtocol

__all__ = ["EventsProcessor", "MetadataSinkProtocol"]
