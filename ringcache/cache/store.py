"""
Key-Value Store Module

The local key space of a single cache node. InMemoryBackend wraps it to
act as the storage collaborator the router writes to.
"""

import threading
from collections import OrderedDict
from typing import Optional, Dict, Any

from ..config.settings import settings


class KVStore:
    """
    Bounded in-memory key-value store with LRU eviction.

    This class provides O(1) average-case time complexity for:
    - put: Insert or update a key-value pair
    - get: Retrieve a value by key
    - delete: Remove a key-value pair
    - exists: Check if a key exists

    When the store is full, the least recently used key is evicted to
    make room for a new one. All operations hold an internal lock, so one
    store can be shared by concurrent request handlers.

    Internal Storage:
        Uses OrderedDict for O(1) operations with LRU ordering.
        Format: key -> value bytes

    Attributes:
        max_size: Maximum number of keys allowed in the store
    """

    def __init__(self, max_size: int = None):
        """
        Initialize the KV store.

        Args:
            max_size: Maximum number of keys (default from settings.MAX_KEYS)

        Raises:
            ValueError: If max_size is not positive
        """
        self.max_size = max_size if max_size is not None else settings.MAX_KEYS
        if self.max_size <= 0:
            raise ValueError("max_size must be positive")

        self._store: "OrderedDict[str, bytes]" = OrderedDict()
        self._lock = threading.Lock()
        self._evictions = 0

    def put(self, key: str, value: bytes) -> Optional[str]:
        """
        Insert or update a key-value pair.

        Args:
            key: The key to store
            value: The value to associate with the key

        Returns:
            The evicted key if the store was full, None otherwise

        Time Complexity: O(1) average
        """
        with self._lock:
            if key in self._store:
                # Update value and mark as most recently used
                self._store[key] = value
                self._store.move_to_end(key)
                return None

            evicted = None
            if len(self._store) >= self.max_size:
                evicted, _ = self._store.popitem(last=False)
                self._evictions += 1

            self._store[key] = value
            return evicted

    def get(self, key: str) -> Optional[bytes]:
        """
        Retrieve the value for a given key and mark it recently used.

        Returns:
            The value if found, None otherwise
        """
        with self._lock:
            if key not in self._store:
                return None
            self._store.move_to_end(key)
            return self._store[key]

    def delete(self, key: str) -> bool:
        """
        Delete a key-value pair.

        Returns:
            True if key was deleted, False if key didn't exist
        """
        with self._lock:
            return self._store.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        """Check if a key exists, without touching LRU order."""
        with self._lock:
            return key in self._store

    def size(self) -> int:
        """Get the current number of keys in the store."""
        with self._lock:
            return len(self._store)

    def clear(self) -> None:
        """Remove all keys from the store."""
        with self._lock:
            self._store.clear()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary containing:
            - total_keys: Total keys in store
            - evictions: Keys evicted to make room since creation
            - max_size: Maximum capacity
            - utilization: Current usage as fraction of max_size
        """
        with self._lock:
            total = len(self._store)
            return {
                "total_keys": total,
                "evictions": self._evictions,
                "max_size": self.max_size,
                "utilization": total / self.max_size,
            }
