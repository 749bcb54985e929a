"""
Tests for the database-backed storage manager against SQLite.

Each test gets a fresh database file under tmp_path with the catalog
tables created by Database.startup.
"""

import pytest

from catalog_storage.core.exceptions import (
    AlreadyExistsError,
    IllegalQueryParameterError,
    InvalidArgumentError,
    StorageError,
    UnsupportedOperationError,
)
from catalog_storage.models import (
    EventStorable,
    FieldType,
    OrderByField,
    QueryParam,
    SchemaMetadataStorable,
    SchemaVersionStorable,
    SearchQuery,
)
from catalog_storage.storage.transaction import TransactionIsolation, managed_transaction

from factories import make_event, make_meta, make_version


# ============================================================
# CRUD
# ============================================================

class TestCrud:

    @pytest.mark.asyncio
    async def test_add_then_get(self, sql_manager):
        meta = make_meta(id=1)
        await sql_manager.add(meta)
        assert await sql_manager.get(meta.get_storable_key()) == meta

    @pytest.mark.asyncio
    async def test_get_absent_returns_none(self, sql_manager):
        assert await sql_manager.get(SchemaMetadataStorable.key_of(id=99)) is None

    @pytest.mark.asyncio
    async def test_add_duplicate_key_raises_already_exists(self, sql_manager):
        await sql_manager.add(make_meta(id=1))
        with pytest.raises(AlreadyExistsError):
            await sql_manager.add(make_meta(id=1, name="other"))

    @pytest.mark.asyncio
    async def test_add_duplicate_unique_name_raises_already_exists(self, sql_manager):
        await sql_manager.add(make_meta(id=1, name="orders"))
        with pytest.raises(AlreadyExistsError):
            await sql_manager.add(make_meta(id=2, name="orders"))

    @pytest.mark.asyncio
    async def test_add_without_id_uses_auto_increment(self, sql_manager):
        await sql_manager.add(make_meta(id=None, name="first"))
        await sql_manager.add(make_meta(id=None, name="second"))
        names = [meta.name for meta in await sql_manager.list(
            SchemaMetadataStorable.get_namespace(), [OrderByField.asc("id")])]
        assert names == ["first", "second"]

    @pytest.mark.asyncio
    async def test_update_overwrites(self, sql_manager):
        meta = make_meta(id=1)
        await sql_manager.add(meta)
        meta.description = "changed"
        meta.evolve = False
        await sql_manager.update(meta)

        stored = await sql_manager.get(meta.get_storable_key())
        assert stored.description == "changed"
        assert stored.evolve is False

    @pytest.mark.asyncio
    async def test_update_absent_does_not_create_row(self, sql_manager):
        await sql_manager.update(make_meta(id=5))
        assert await sql_manager.get(SchemaMetadataStorable.key_of(id=5)) is None

    @pytest.mark.asyncio
    async def test_add_or_update(self, sql_manager):
        meta = make_meta(id=1)
        await sql_manager.add_or_update(meta)
        meta.compatibility = "FULL"
        await sql_manager.add_or_update(meta)

        stored = await sql_manager.list(SchemaMetadataStorable.get_namespace())
        assert len(stored) == 1
        assert stored[0].compatibility == "FULL"

    @pytest.mark.asyncio
    async def test_remove_returns_deleted_value(self, sql_manager):
        meta = make_meta(id=1)
        await sql_manager.add(meta)

        assert await sql_manager.remove(meta.get_storable_key()) == meta
        assert await sql_manager.get(meta.get_storable_key()) is None
        assert await sql_manager.remove(meta.get_storable_key()) is None

    @pytest.mark.asyncio
    async def test_event_columns_round_trip(self, sql_manager):
        event = make_event(id=1, processed_id=42)
        await sql_manager.add(event)

        stored = await sql_manager.get(event.get_storable_key())
        assert stored.processed_id == 42
        assert stored.processed is False
        assert stored.failed is False


# ============================================================
# QUERIES
# ============================================================

class TestQueries:

    @pytest.fixture
    async def populated(self, sql_manager):
        for id, name in [(1, "orders"), (2, "payments"), (3, "users")]:
            await sql_manager.add(make_meta(id=id, name=name, schema_group="kafka" if id < 3 else "hive"))
        return sql_manager

    @pytest.mark.asyncio
    async def test_find_by_param(self, populated):
        found = await populated.find(SchemaMetadataStorable.get_namespace(), [QueryParam("name", "payments")])
        assert [meta.id for meta in found] == [2]

    @pytest.mark.asyncio
    async def test_find_converts_param_type(self, populated):
        found = await populated.find(SchemaMetadataStorable.get_namespace(), [QueryParam("id", "3")])
        assert [meta.name for meta in found] == ["users"]

    @pytest.mark.asyncio
    async def test_find_with_order(self, populated):
        found = await populated.find(SchemaMetadataStorable.get_namespace(),
                                     [QueryParam("schema_group", "kafka")],
                                     [OrderByField.desc("id")])
        assert [meta.id for meta in found] == [2, 1]

    @pytest.mark.asyncio
    async def test_find_without_matching_params_lists_namespace(self, populated):
        namespace = SchemaMetadataStorable.get_namespace()
        found = await populated.find(namespace, [QueryParam("nope", "x")], [OrderByField.asc("id")])
        assert found == await populated.list(namespace, [OrderByField.asc("id")])
        assert len(found) == 3

    @pytest.mark.asyncio
    async def test_find_with_type_mismatch_is_client_error(self, populated):
        with pytest.raises(IllegalQueryParameterError):
            await populated.find(SchemaMetadataStorable.get_namespace(), [QueryParam("id", "abc")])

    @pytest.mark.asyncio
    async def test_search(self, populated):
        found = await populated.search(
            SearchQuery.search_from(SchemaMetadataStorable.get_namespace())
            .where_contains("name", "s")
            .order_by(OrderByField.desc("name"))
        )
        assert [meta.name for meta in found] == ["users", "payments", "orders"]

    @pytest.mark.asyncio
    async def test_search_for_update_is_unsupported_on_sqlite(self, populated):
        with pytest.raises(UnsupportedOperationError):
            await populated.search(SearchQuery(SchemaMetadataStorable.get_namespace()).for_update())

    @pytest.mark.asyncio
    async def test_next_id(self, sql_manager):
        namespace = SchemaVersionStorable.get_namespace()
        assert await sql_manager.next_id(namespace) == 1
        await sql_manager.add(make_version(id=5))
        assert await sql_manager.next_id(namespace) == 6

    @pytest.mark.asyncio
    async def test_get_columns(self, executor):
        columns = await executor.get_columns(EventStorable.get_namespace())
        assert set(columns.names()) == {"id", "type", "processedId", "processed", "failed"}
        assert columns.get_type("processedId") is FieldType.LONG
        assert columns.get_type("processed") is FieldType.BOOLEAN

    @pytest.mark.asyncio
    async def test_unregistered_namespace_is_rejected_before_sql(self, sql_manager, executor):
        with pytest.raises(InvalidArgumentError):
            await sql_manager.search(SearchQuery("schema_metadata_info; DROP TABLE atlas_events"))
        with pytest.raises(InvalidArgumentError):
            await sql_manager.list("unknown")
        with pytest.raises(InvalidArgumentError):
            await executor.aggregate("unknown", "id", "MAX")
        with pytest.raises(InvalidArgumentError):
            await sql_manager.next_id("unknown")

        assert await sql_manager.list(EventStorable.get_namespace()) == []

    @pytest.mark.asyncio
    async def test_get_with_only_unknown_key_fields_is_rejected(self, sql_manager):
        key = SchemaMetadataStorable.key_of(bogus=1)
        with pytest.raises(IllegalQueryParameterError):
            await sql_manager.get(key)


# ============================================================
# LOCKS AND TRANSACTIONS
# ============================================================

class TestLocksAndTransactions:

    @pytest.mark.asyncio
    async def test_negative_lock_timeout_rejected(self, sql_manager):
        with pytest.raises(InvalidArgumentError):
            await sql_manager.write_lock(SchemaMetadataStorable.key_of(id=1), -1)

    @pytest.mark.asyncio
    async def test_row_locks_unsupported_on_sqlite(self, sql_manager):
        await sql_manager.add(make_meta(id=1))
        with pytest.raises(UnsupportedOperationError):
            await sql_manager.read_lock(SchemaMetadataStorable.key_of(id=1), 0.1)

    @pytest.mark.asyncio
    async def test_rollback_discards_writes(self, sql_manager):
        await sql_manager.begin_transaction(TransactionIsolation.READ_COMMITTED)
        await sql_manager.add(make_meta(id=1))
        assert await sql_manager.get(SchemaMetadataStorable.key_of(id=1)) is not None
        await sql_manager.rollback_transaction()

        assert await sql_manager.get(SchemaMetadataStorable.key_of(id=1)) is None

    @pytest.mark.asyncio
    async def test_commit_keeps_writes(self, sql_manager):
        await sql_manager.begin_transaction(TransactionIsolation.READ_COMMITTED)
        await sql_manager.add(make_meta(id=1))
        await sql_manager.commit_transaction()

        assert await sql_manager.get(SchemaMetadataStorable.key_of(id=1)) is not None

    @pytest.mark.asyncio
    async def test_nested_transaction_rejected(self, sql_manager):
        await sql_manager.begin_transaction(TransactionIsolation.READ_COMMITTED)
        try:
            with pytest.raises(StorageError):
                await sql_manager.begin_transaction(TransactionIsolation.READ_COMMITTED)
        finally:
            await sql_manager.rollback_transaction()

    @pytest.mark.asyncio
    async def test_commit_without_transaction(self, sql_manager):
        with pytest.raises(StorageError):
            await sql_manager.commit_transaction()

    @pytest.mark.asyncio
    async def test_managed_transaction_rolls_back_on_error(self, sql_manager):
        with pytest.raises(AlreadyExistsError):
            async with managed_transaction(sql_manager):
                await sql_manager.add(make_meta(id=1, name="a"))
                await sql_manager.add(make_meta(id=1, name="b"))

        assert await sql_manager.get(SchemaMetadataStorable.key_of(id=1)) is None

    @pytest.mark.asyncio
    async def test_connection_usable_after_failed_statement(self, sql_manager):
        await sql_manager.add(make_meta(id=1))
        with pytest.raises(AlreadyExistsError):
            await sql_manager.add(make_meta(id=1))
        await sql_manager.add(make_meta(id=2, name="next"))
        assert len(await sql_manager.list(SchemaMetadataStorable.get_namespace())) == 2
