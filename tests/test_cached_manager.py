"""
Tests for the cache-backed storage manager.

The delegate is the in-memory manager, the cache a real StorableCache
driven by a fake clock, so cache contents can be inspected directly.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from catalog_storage.core.exceptions import StorageError
from catalog_storage.models import QueryParam, SchemaMetadataStorable
from catalog_storage.storage.cached_manager import CacheBackedStorageManager
from catalog_storage.storage.memory import InMemoryStorageManager
from catalog_storage.storage.transaction import TransactionIsolation

from factories import make_event, make_meta


@pytest.fixture
def manager(cache, memory_manager):
    return CacheBackedStorageManager(cache, memory_manager)


class TestWriteThrough:

    @pytest.mark.asyncio
    async def test_add_then_get_returns_written_value(self, manager, cache):
        meta = make_meta(id=1)
        await manager.add(meta)
        assert cache.contains(meta.get_storable_key())
        assert await manager.get(meta.get_storable_key()) == meta

    @pytest.mark.asyncio
    async def test_update_then_get_returns_written_value(self, manager):
        meta = make_meta(id=1)
        await manager.add(meta)
        updated = make_meta(id=1, description="v2")
        await manager.update(updated)
        assert await manager.get(meta.get_storable_key()) == updated

    @pytest.mark.asyncio
    async def test_add_or_update_then_get_returns_written_value(self, manager):
        meta = make_meta(id=1, compatibility="FULL")
        await manager.add_or_update(meta)
        assert await manager.get(meta.get_storable_key()) == meta

    @pytest.mark.asyncio
    async def test_non_cacheable_never_cached(self, manager, cache):
        event = make_event(id=1, processed_id=10)
        await manager.add(event)
        assert not cache.contains(event.get_storable_key())

        event.processed = True
        await manager.update(event)
        assert not cache.contains(event.get_storable_key())

        assert (await manager.get(event.get_storable_key())).processed is True
        assert not cache.contains(event.get_storable_key())

    @pytest.mark.asyncio
    async def test_failed_database_write_leaves_cache_untouched(self, cache):
        delegate = AsyncMock()
        delegate.add.side_effect = RuntimeError("down")
        manager = CacheBackedStorageManager(cache, delegate)

        with pytest.raises(RuntimeError):
            await manager.add(make_meta(id=1))
        assert cache.size() == 0


class TestReadThrough:

    @pytest.mark.asyncio
    async def test_miss_populates_cache(self, manager, cache, memory_manager):
        meta = make_meta(id=1)
        await memory_manager.add(meta)

        assert await manager.get(meta.get_storable_key()) == meta
        assert cache.contains(meta.get_storable_key())

    @pytest.mark.asyncio
    async def test_hit_does_not_reach_delegate(self, cache):
        meta = make_meta(id=1)
        delegate = AsyncMock()
        manager = CacheBackedStorageManager(cache, delegate)
        cache.put(meta.get_storable_key(), meta)

        assert await manager.get(meta.get_storable_key()) == meta
        delegate.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cached_non_cacheable_entry_is_evicted(self, manager, cache, memory_manager):
        event = make_event(id=1, processed_id=10)
        await memory_manager.add(event)
        stale = make_event(id=1, processed_id=10, failed=True)
        cache.put(event.get_storable_key(), stale)

        value = await manager.get(event.get_storable_key())
        assert value.failed is False
        assert not cache.contains(event.get_storable_key())

    @pytest.mark.asyncio
    async def test_find_and_list_bypass_cache(self, manager, cache, memory_manager):
        await memory_manager.add(make_meta(id=1))
        namespace = SchemaMetadataStorable.get_namespace()

        assert len(await manager.find(namespace, [QueryParam("id", "1")])) == 1
        assert len(await manager.list(namespace)) == 1
        assert cache.size() == 0


class TestRemove:

    @pytest.mark.asyncio
    async def test_remove_then_get_is_absent(self, manager, cache):
        meta = make_meta(id=1)
        await manager.add(meta)

        assert await manager.remove(meta.get_storable_key()) == meta
        assert not cache.contains(meta.get_storable_key())
        assert await manager.get(meta.get_storable_key()) is None

    @pytest.mark.asyncio
    async def test_remove_evicts_stale_entry(self, manager, cache, memory_manager):
        meta = make_meta(id=1)
        await memory_manager.add(meta)
        cache.put(meta.get_storable_key(), make_meta(id=1, description="stale"))

        assert await manager.remove(meta.get_storable_key()) == meta
        assert await manager.get(meta.get_storable_key()) is None

    @pytest.mark.asyncio
    async def test_remove_absent_key_evicts_cache(self, manager, cache):
        meta = make_meta(id=1)
        cache.put(meta.get_storable_key(), meta)

        assert await manager.remove(meta.get_storable_key()) is None
        assert cache.size() == 0


class TestTransactions:

    @pytest.mark.asyncio
    async def test_rollback_evicts_keys_written_in_transaction(self, manager, cache):
        kept = make_meta(id=1, name="kept")
        await manager.add(kept)

        await manager.begin_transaction(TransactionIsolation.READ_COMMITTED)
        written = make_meta(id=2, name="written")
        await manager.add(written)
        await manager.rollback_transaction()

        assert cache.contains(kept.get_storable_key())
        assert not cache.contains(written.get_storable_key())

    @pytest.mark.asyncio
    async def test_commit_keeps_cached_writes(self, manager, cache):
        await manager.begin_transaction(TransactionIsolation.READ_COMMITTED)
        meta = make_meta(id=1)
        await manager.add(meta)
        await manager.commit_transaction()

        assert cache.contains(meta.get_storable_key())

    @pytest.mark.asyncio
    async def test_cleanup_clears_cache(self, manager, cache):
        await manager.add(make_meta(id=1))
        await manager.cleanup()
        assert cache.size() == 0


# ============================================================
# ISOLATION AND CONCURRENCY
# ============================================================

class PausingReadManager(InMemoryStorageManager):
    """In-memory delegate whose get pauses between reading and returning."""

    def __init__(self, storable_factory):
        super().__init__(storable_factory)
        self.read_done = asyncio.Event()
        self.release = asyncio.Event()

    async def get(self, key):
        value = await super().get(key)
        self.read_done.set()
        await self.release.wait()
        return value


@pytest.fixture
def pausing_delegate(storable_factory):
    return PausingReadManager(storable_factory)


class TestIsolation:

    @pytest.mark.asyncio
    async def test_mutating_returned_value_does_not_change_cache(self, manager):
        meta = make_meta(id=1, description="v1")
        await manager.add(meta)

        fetched = await manager.get(meta.get_storable_key())
        fetched.description = "unsaved"
        meta.description = "also unsaved"

        assert (await manager.get(meta.get_storable_key())).description == "v1"

    @pytest.mark.asyncio
    async def test_failed_update_keeps_last_written_value(self, manager, memory_manager, monkeypatch):
        meta = make_meta(id=1, description="v1")
        await manager.add(meta)
        fetched = await manager.get(meta.get_storable_key())
        fetched.description = "unsaved"
        monkeypatch.setattr(memory_manager, "update", AsyncMock(side_effect=StorageError("down")))

        with pytest.raises(StorageError):
            await manager.update(fetched)

        assert (await manager.get(meta.get_storable_key())).description == "v1"


class TestConcurrentReadThrough:

    @pytest.mark.asyncio
    async def test_update_during_load_wins(self, cache, pausing_delegate):
        manager = CacheBackedStorageManager(cache, pausing_delegate)
        key = make_meta(id=1).get_storable_key()
        await pausing_delegate.add(make_meta(id=1, description="v1"))

        load = asyncio.create_task(manager.get(key))
        await pausing_delegate.read_done.wait()
        await manager.update(make_meta(id=1, description="v2"))
        pausing_delegate.release.set()

        assert (await load).description == "v1"
        assert (await manager.get(key)).description == "v2"

    @pytest.mark.asyncio
    async def test_remove_during_load_stays_removed(self, cache, pausing_delegate):
        manager = CacheBackedStorageManager(cache, pausing_delegate)
        key = make_meta(id=1).get_storable_key()
        await pausing_delegate.add(make_meta(id=1))

        load = asyncio.create_task(manager.get(key))
        await pausing_delegate.read_done.wait()
        await manager.remove(key)
        pausing_delegate.release.set()
        await load

        assert not cache.contains(key)
        assert await manager.get(key) is None

    @pytest.mark.asyncio
    async def test_undisturbed_load_is_cached(self, cache, pausing_delegate):
        manager = CacheBackedStorageManager(cache, pausing_delegate)
        key = make_meta(id=1).get_storable_key()
        await pausing_delegate.add(make_meta(id=1))
        pausing_delegate.release.set()

        await manager.get(key)

        assert cache.contains(key)
        assert manager._loading == {}
