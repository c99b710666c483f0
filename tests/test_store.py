"""
Tests for the node-local key space and the in-memory backend.

These tests verify the KVStore operations:
- put(): Insert or update key-value pairs, evicting LRU when full
- get(): Retrieve values by key
- delete(): Remove key-value pairs
- exists(): Check if key exists

Run with: python -m pytest tests/test_store.py -v
"""

import pytest

from ringcache.cache.store import KVStore
from ringcache.cluster import PhysicalNode
from ringcache.storage import InMemoryBackend, InMemoryConnector, StorageBackend


class TestKVStorePut:
    """Test put() method."""

    def test_put_new_key(self, store: KVStore):
        """Test inserting a new key-value pair."""
        assert store.put("key1", b"value1") is None
        assert store.size() == 1

    def test_put_update_existing_key(self, store: KVStore):
        """Test updating an existing key's value."""
        store.put("key1", b"value1")
        store.put("key1", b"value2")

        assert store.get("key1") == b"value2"
        assert store.size() == 1  # Size should not increase

    def test_put_multiple_keys(self, store: KVStore):
        """Test inserting multiple different keys."""
        store.put("key1", b"value1")
        store.put("key2", b"value2")
        store.put("key3", b"value3")

        assert store.size() == 3
        assert store.get("key2") == b"value2"

    def test_invalid_size(self):
        """Test initialization with invalid size."""
        with pytest.raises(ValueError):
            KVStore(max_size=0)


class TestKVStoreGetDelete:
    """Test get(), delete() and exists()."""

    def test_get_nonexistent_key(self, store: KVStore):
        """Test retrieving a key that doesn't exist returns None."""
        assert store.get("nonexistent") is None

    def test_delete_existing_key(self, store: KVStore):
        """Test deleting an existing key."""
        store.put("key1", b"value1")
        assert store.delete("key1") is True
        assert store.get("key1") is None
        assert store.size() == 0

    def test_delete_nonexistent_key(self, store: KVStore):
        """Test deleting a key that doesn't exist returns False."""
        assert store.delete("nonexistent") is False

    def test_exists(self, store: KVStore):
        """Test exists before and after deletion."""
        store.put("key", b"value")
        assert store.exists("key") is True
        store.delete("key")
        assert store.exists("key") is False

    def test_clear(self, store: KVStore):
        """Test clear removes all keys."""
        store.put("key1", b"value1")
        store.put("key2", b"value2")
        store.clear()
        assert store.size() == 0


class TestKVStoreEviction:
    """Test LRU eviction when the store is full."""

    def test_eviction_when_full(self, small_store: KVStore):
        """Adding past capacity evicts the least recently used key."""
        for i in range(5):
            small_store.put(f"key{i}", b"v")

        evicted = small_store.put("key5", b"v")

        assert evicted == "key0"
        assert small_store.get("key0") is None
        assert small_store.size() == 5

    def test_get_updates_lru_order(self, small_store: KVStore):
        """Reading a key protects it from the next eviction."""
        for i in range(5):
            small_store.put(f"key{i}", b"v")
        small_store.get("key0")

        assert small_store.put("key5", b"v") == "key1"
        assert small_store.exists("key0")

    def test_update_does_not_evict(self, small_store: KVStore):
        """Overwriting an existing key never evicts."""
        for i in range(5):
            small_store.put(f"key{i}", b"v")
        assert small_store.put("key3", b"new") is None
        assert small_store.size() == 5

    def test_stats(self, small_store: KVStore):
        """Stats report size, evictions and utilization."""
        for i in range(6):
            small_store.put(f"key{i}", b"v")
        stats = small_store.get_stats()
        assert stats["total_keys"] == 5
        assert stats["evictions"] == 1
        assert stats["max_size"] == 5
        assert stats["utilization"] == 1.0


@pytest.mark.asyncio
class TestInMemoryBackend:
    """Test the in-memory storage collaborator."""

    async def test_is_storage_backend(self):
        assert isinstance(InMemoryBackend("A"), StorageBackend)

    async def test_write_read_delete(self):
        """Reads report presence explicitly."""
        backend = InMemoryBackend("A", max_size=10)
        assert await backend.read("k") == (None, False)

        await backend.write("k", b"v")
        assert await backend.read("k") == (b"v", True)

        assert await backend.delete("k") is True
        assert await backend.delete("k") is False

    async def test_unavailable_raises(self):
        """An unreachable node raises on every call."""
        backend = InMemoryBackend("A")
        backend.available = False
        with pytest.raises(ConnectionError):
            await backend.write("k", b"v")
        with pytest.raises(ConnectionError):
            await backend.read("k")

    async def test_connector_reuses_backends(self):
        """One backend per node id, shared between lookups."""
        connector = InMemoryConnector(max_size=10)
        first = connector(PhysicalNode("A"))
        assert connector(PhysicalNode("A", address="elsewhere")) is first
        assert connector.backend("A") is first
        assert first.store.max_size == 10

    async def test_connector_fail_and_recover(self):
        """fail() and recover() toggle reachability."""
        connector = InMemoryConnector()
        connector.fail("A")
        with pytest.raises(ConnectionError):
            await connector.backend("A").read("k")
        connector.recover("A")
        assert await connector.backend("A").read("k") == (None, False)
