"""
In-Memory Storage Backend

A StorageBackend backed by a local KVStore, plus a connector that hands
out one backend per node id. Used for single-process clusters, demos and
tests; nodes can be marked unreachable to exercise the failure paths.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from ..cache.store import KVStore
from ..cluster.registry import PhysicalNode
from .backend import StorageBackend

logger = logging.getLogger(__name__)


class InMemoryBackend(StorageBackend):
    """
    StorageBackend over a KVStore.

    Attributes:
        node_id: Node this backend stands for
        store: The local key space
        available: When False every call raises ConnectionError
        latency: Seconds to sleep before serving each call
    """

    def __init__(self, node_id: str, max_size: int = None, latency: float = 0.0):
        self.node_id = node_id
        self.store = KVStore(max_size=max_size)
        self.available = True
        self.latency = latency

    async def _enter(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        if not self.available:
            raise ConnectionError(f"node {self.node_id} unreachable")

    async def write(self, key: str, value: bytes) -> None:
        await self._enter()
        evicted = self.store.put(key, value)
        if evicted is not None:
            logger.debug(f"Node {self.node_id} evicted {evicted}")

    async def read(self, key: str) -> Tuple[Optional[bytes], bool]:
        await self._enter()
        value = self.store.get(key)
        return value, value is not None

    async def delete(self, key: str) -> bool:
        await self._enter()
        return self.store.delete(key)

    def __repr__(self) -> str:
        return (f"InMemoryBackend(node_id={self.node_id!r}, "
                f"keys={self.store.size()}, available={self.available})")


class InMemoryConnector:
    """
    Connector that keeps one InMemoryBackend per node id.

    Backends survive a node leaving the registry, so data is still there
    if the same node id joins again (the way a restarted cache process
    with a warm local store would behave).

    Usage:
        connector = InMemoryConnector()
        router = DistributedCacheRouter(registry, connector)
        connector.fail("cache-b")      # simulate an outage
    """

    def __init__(self, max_size: int = None, latency: float = 0.0):
        self.max_size = max_size
        self.latency = latency
        self._backends: Dict[str, InMemoryBackend] = {}

    def __call__(self, node: PhysicalNode) -> InMemoryBackend:
        return self.backend(node.node_id)

    def backend(self, node_id: str) -> InMemoryBackend:
        """Get (or create) the backend for a node id."""
        backend = self._backends.get(node_id)
        if backend is None:
            backend = InMemoryBackend(node_id, max_size=self.max_size, latency=self.latency)
            self._backends[node_id] = backend
        return backend

    def fail(self, node_id: str) -> None:
        """Make a node unreachable."""
        self.backend(node_id).available = False
        logger.debug(f"Node {node_id} marked unreachable")

    def recover(self, node_id: str) -> None:
        """Make a node reachable again."""
        self.backend(node_id).available = True
        logger.debug(f"Node {node_id} marked reachable")

    def holders(self, key: str) -> Dict[str, bytes]:
        """node id -> value for every backend currently holding key."""
        return {
            node_id: backend.store.get(key)
            for node_id, backend in self._backends.items()
            if backend.store.exists(key)
        }
