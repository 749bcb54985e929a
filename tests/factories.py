"""Builders for catalog records used across the tests."""

from catalog_storage.models import EventStorable, EventType, SchemaMetadataStorable, SchemaVersionStorable


def make_meta(id=1, name="orders", **overrides) -> SchemaMetadataStorable:
    values = dict(id=id, type="avro", schema_group="kafka", name=name, description=f"{name} schema")
    values.update(overrides)
    return SchemaMetadataStorable(**values)


def make_version(id=1, schema_metadata_id=1, version=1, name="orders", **overrides) -> SchemaVersionStorable:
    values = dict(id=id, schema_metadata_id=schema_metadata_id, name=name, version=version,
                  schema_text='{"type": "string"}', fingerprint=f"fp-{id}")
    values.update(overrides)
    return SchemaVersionStorable(**values)


def make_event(id, processed_id, event_type=EventType.CREATE_META, **overrides) -> EventStorable:
    values = dict(id=id, type=int(event_type), processed_id=processed_id)
    values.update(overrides)
    return EventStorable(**values)
