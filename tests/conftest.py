"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import hashlib
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from ringcache.cache.store import KVStore
from ringcache.cluster import DistributedCacheRouter, HashRing, NodeRegistry, PhysicalNode
from ringcache.storage import InMemoryConnector


class TableHash:
    """
    Hash function with hand-picked positions, for tests that need to know
    exactly where virtual nodes and keys land.

    Labels missing from the table fall back to sha256 reduced mod space.
    """

    def __init__(self, table: Dict[str, int], space: int = 1 << 16):
        self.table = dict(table)
        self.space = space

    def __call__(self, data) -> int:
        if isinstance(data, bytes):
            data = data.decode('utf-8')
        if data in self.table:
            return self.table[data]
        digest = hashlib.sha256(data.encode('utf-8')).digest()
        return int.from_bytes(digest[:8], byteorder='big') % self.space


def build_ring(node_ids: List[str], virtual_nodes: int = 3, hash_function=None) -> HashRing:
    """Create a ring and add node_ids in the given order."""
    ring = HashRing(virtual_nodes=virtual_nodes, hash_function=hash_function)
    for node_id in node_ids:
        ring.add_node(node_id)
    return ring


def sample_keys(count: int = 10000, prefix: str = "key") -> List[str]:
    return [f"{prefix}:{i}" for i in range(count)]


# ============================================================================
# KVStore Fixtures
# ============================================================================

@pytest.fixture
def store() -> KVStore:
    """Create a fresh KVStore instance with default size (100 keys)."""
    return KVStore(max_size=100)


@pytest.fixture
def small_store() -> KVStore:
    """Create a KVStore with small capacity for eviction testing (5 keys)."""
    return KVStore(max_size=5)


# ============================================================================
# Ring / Registry Fixtures
# ============================================================================

@pytest.fixture
def table_hash() -> TableHash:
    """
    Three nodes with one virtual node each at 100, 200 and 300.

    Keys: "low" -> 50, "mid" -> 150, "exact" -> 200, "high" -> 400.
    """
    return TableHash({
        "A:0": 100,
        "B:0": 200,
        "C:0": 300,
        "low": 50,
        "mid": 150,
        "exact": 200,
        "high": 400,
    })


@pytest.fixture
def registry() -> NodeRegistry:
    """Registry with nodes A, B and C, 3 virtual nodes each."""
    reg = NodeRegistry(virtual_nodes=3)
    for node_id in ("A", "B", "C"):
        reg.add(PhysicalNode(node_id, address=f"{node_id.lower()}.cache:7171"))
    return reg


@pytest.fixture
def connector() -> InMemoryConnector:
    """In-memory backends, one per node id."""
    return InMemoryConnector(max_size=1000)


# ============================================================================
# Router Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def router(registry: NodeRegistry, connector: InMemoryConnector):
    """Sequential router over the A/B/C registry, replication factor 2."""
    async with DistributedCacheRouter(
        registry,
        connector,
        replication_factor=2,
        write_quorum=1,
        request_timeout=1.0,
        parallel=False,
    ) as rt:
        yield rt


@pytest.fixture
def router_factory(registry: NodeRegistry, connector: InMemoryConnector):
    """
    Factory fixture to create routers with custom dispatch settings.

    Usage:
        def test_something(router_factory):
            rt = router_factory(parallel=True, request_timeout=0.1)
    """
    def factory(
            replication_factor: int = 2,
            write_quorum: int = 1,
            request_timeout: float = 1.0,
            parallel: bool = False,
            reg: Optional[NodeRegistry] = None,
    ) -> DistributedCacheRouter:
        return DistributedCacheRouter(
            reg if reg is not None else registry,
            connector,
            replication_factor=replication_factor,
            write_quorum=write_quorum,
            request_timeout=request_timeout,
            parallel=parallel,
        )
    return factory


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
