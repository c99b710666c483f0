"""
Node Registry Module

Tracks the active physical nodes and keeps the hash ring in step with them.

The registry is the single writer for membership: every add/remove goes
through it. After each change it publishes a RegistryView, an immutable
pair of (node metadata, ring snapshot). Readers that resolve through one
view never see a node that is registered but not on the ring, or the
other way around.
"""

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .errors import DuplicateNodeError, UnknownNodeError
from .hashing import HashFunction
from .ring import HashRing, RingSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhysicalNode:
    """
    A cache node known to the registry.

    Attributes:
        node_id: Unique node identifier (the only thing the ring stores)
        address: Opaque address handed to the storage connector
        metadata: Opaque extra information for the storage connector
    """
    node_id: str
    address: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class RegistryView:
    """Consistent registry state: node metadata plus the matching ring."""
    nodes: Mapping[str, PhysicalNode]
    ring: RingSnapshot
    hash_function: HashFunction

    def resolve(self, key: str) -> str:
        return self.ring.lookup(self.hash_function(key))

    def resolve_n(self, key: str, n: int) -> List[str]:
        return self.ring.lookup_n(self.hash_function(key), n)

    def get(self, node_id: str) -> PhysicalNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise UnknownNodeError(node_id) from None

    def list(self) -> List[PhysicalNode]:
        return list(self.nodes.values())


class NodeRegistry:
    """
    Authoritative set of physical nodes.

    Usage:
        registry = NodeRegistry(virtual_nodes=160)
        registry.add(PhysicalNode("cache-a", address="10.0.0.1:7171"))
        view = registry.view()
        view.resolve_n("user:42", 2)

    The HashRing is owned by the registry and never handed out; callers
    only see its immutable snapshots through `ring` and `view()`.

    Attributes:
        ring: Ring snapshot matching the current membership
        hash_function: Hash used to place nodes and keys
        virtual_nodes: Virtual nodes per physical node
    """

    def __init__(
            self,
            virtual_nodes: Optional[int] = None,
            hash_function: Optional[HashFunction] = None,
    ):
        """
        Initialize an empty registry.

        Args:
            virtual_nodes: Virtual nodes per physical node
                           (default from settings.VIRTUAL_NODES)
            hash_function: Ring hash function (default HashFunction())
        """
        self._ring = HashRing(virtual_nodes=virtual_nodes, hash_function=hash_function)
        self._lock = threading.Lock()
        self._view = RegistryView(
            nodes=MappingProxyType({}),
            ring=self._ring.snapshot(),
            hash_function=self._ring.hash_function,
        )

    @property
    def ring(self) -> RingSnapshot:
        return self._view.ring

    @property
    def hash_function(self) -> HashFunction:
        return self._ring.hash_function

    @property
    def virtual_nodes(self) -> int:
        return self._ring.virtual_nodes

    def view(self) -> RegistryView:
        """Current consistent (nodes, ring) pair."""
        return self._view

    def add(self, node: PhysicalNode) -> None:
        """
        Register a node and place it on the ring.

        Raises:
            DuplicateNodeError: If a node with the same id is registered
            RingFullError: If the ring has no room; the registry is unchanged
        """
        with self._lock:
            current = self._view
            if node.node_id in current.nodes:
                raise DuplicateNodeError(node.node_id)

            nodes = dict(current.nodes)
            nodes[node.node_id] = node
            self._ring.add_node(node.node_id)
            self._publish(nodes)

        logger.info(f"Node {node.node_id} joined ({len(nodes)} nodes)")

    def remove(self, node_id: str) -> PhysicalNode:
        """
        Take a node off the ring, then drop its metadata.

        Returns:
            The removed node

        Raises:
            UnknownNodeError: If node_id is not registered (ring untouched)
        """
        with self._lock:
            current = self._view
            if node_id not in current.nodes:
                raise UnknownNodeError(node_id)

            self._ring.remove_node(node_id)
            nodes = dict(current.nodes)
            removed = nodes.pop(node_id)
            self._publish(nodes)

        logger.info(f"Node {node_id} left ({len(nodes)} nodes)")
        return removed

    def _publish(self, nodes: Dict[str, PhysicalNode]) -> None:
        self._view = RegistryView(
            nodes=MappingProxyType(nodes),
            ring=self._ring.snapshot(),
            hash_function=self._ring.hash_function,
        )

    def get(self, node_id: str) -> PhysicalNode:
        """
        Raises:
            UnknownNodeError: If node_id is not registered
        """
        return self._view.get(node_id)

    def list(self) -> List[PhysicalNode]:
        """Snapshot of all registered nodes (order not significant)."""
        return self._view.list()

    def __len__(self) -> int:
        return len(self._view.nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._view.nodes

    def __repr__(self) -> str:
        return f"NodeRegistry(nodes={sorted(self._view.nodes)})"
