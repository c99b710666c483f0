"""
Consistent Hash Ring Module

Maps keys to physical nodes through virtual nodes placed on a hash ring.

Each physical node owns `virtual_nodes` positions, derived by hashing
"<node_id>:<i>". A key belongs to the first virtual node at or after its
own hash, wrapping around to the smallest position. Adding or removing a
node only moves the keys in the arcs that node's virtual nodes own.

Concurrency:
    The ring state lives in an immutable RingSnapshot. Writers serialize on
    a lock, build a new snapshot and publish it with a single assignment.
    Readers take no lock; every lookup captures exactly one snapshot, so it
    never mixes positions from before and after a concurrent change.
"""

import bisect
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ..config.settings import settings
from .errors import DuplicateNodeError, EmptyRingError, RingFullError, UnknownNodeError
from .hashing import HashFunction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VirtualNode:
    """A position on the ring and the physical node that owns it."""
    position: int
    node_id: str


@dataclass(frozen=True)
class RingSnapshot:
    """
    Immutable view of the ring at one point in time.

    Attributes:
        positions: Sorted virtual-node positions (no duplicates)
        owners: Owning node id for each entry of positions
        nodes: Physical node ids on the ring
        placements: node id -> positions owned by that node (read-only)
    """
    positions: Tuple[int, ...] = ()
    owners: Tuple[str, ...] = ()
    nodes: FrozenSet[str] = frozenset()
    placements: Mapping[str, Tuple[int, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __len__(self) -> int:
        return len(self.positions)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def successor(self, key_hash: int) -> int:
        """Index of the first position >= key_hash, wrapping to 0."""
        idx = bisect.bisect_left(self.positions, key_hash)
        if idx == len(self.positions):
            idx = 0
        return idx

    def lookup(self, key_hash: int) -> str:
        """Owner of the successor position for a hashed key."""
        if not self.positions:
            raise EmptyRingError()
        return self.owners[self.successor(key_hash)]

    def lookup_n(self, key_hash: int, n: int) -> List[str]:
        """
        Walk clockwise from the successor collecting distinct owners.

        Stops after n distinct nodes or one full revolution, whichever
        comes first.
        """
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}")
        if not self.positions:
            raise EmptyRingError()

        wanted = min(n, len(self.nodes))
        ring_size = len(self.positions)
        start = self.successor(key_hash)

        result: List[str] = []
        seen = set()
        for offset in range(ring_size):
            owner = self.owners[(start + offset) % ring_size]
            if owner in seen:
                continue
            seen.add(owner)
            result.append(owner)
            if len(result) >= wanted:
                break
        return result

    def virtual_nodes(self) -> List[VirtualNode]:
        return [VirtualNode(p, o) for p, o in zip(self.positions, self.owners)]


class HashRing:
    """
    Consistent hash ring with virtual nodes.

    Usage:
        ring = HashRing(virtual_nodes=160)
        ring.add_node("cache-a")
        ring.add_node("cache-b")

        owner = ring.resolve("user:42")           # "cache-a" or "cache-b"
        replicas = ring.resolve_n("user:42", 2)   # both, owner first

    Attributes:
        virtual_nodes: Virtual nodes per physical node (R)
        hash_function: Callable mapping str/bytes to a ring position
    """

    def __init__(
            self,
            virtual_nodes: Optional[int] = None,
            hash_function: Optional[HashFunction] = None,
    ):
        """
        Initialize an empty ring.

        Args:
            virtual_nodes: Virtual nodes per physical node
                           (default from settings.VIRTUAL_NODES)
            hash_function: Hash onto the ring space (default HashFunction())

        Raises:
            ValueError: If virtual_nodes is not positive
        """
        self.virtual_nodes = virtual_nodes if virtual_nodes is not None else settings.VIRTUAL_NODES
        if self.virtual_nodes < 1:
            raise ValueError("virtual_nodes must be positive")

        self.hash_function = hash_function if hash_function is not None else HashFunction()
        self._snapshot = RingSnapshot()
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_node(self, node_id: str) -> None:
        """
        Place a physical node's virtual nodes on the ring.

        Args:
            node_id: Unique physical node id

        Raises:
            DuplicateNodeError: If node_id is already on the ring
            RingFullError: If the hash space has no room left
        """
        with self._write_lock:
            current = self._snapshot
            if node_id in current.nodes:
                raise DuplicateNodeError(node_id)
            self._snapshot = self._with_node(current, node_id)

        logger.debug(f"Added node {node_id} ({self.virtual_nodes} virtual nodes)")

    def remove_node(self, node_id: str) -> None:
        """
        Remove exactly the virtual nodes owned by node_id.

        Raises:
            UnknownNodeError: If node_id is not on the ring
        """
        with self._write_lock:
            current = self._snapshot
            if node_id not in current.nodes:
                raise UnknownNodeError(node_id)
            self._snapshot = self._without_node(current, node_id)

        logger.debug(f"Removed node {node_id}")

    def rebuild(self, node_ids: Iterable[str]) -> None:
        """
        Recompute the ring from scratch for the given node ids.

        Nodes are placed in sorted id order, so the result only depends
        on the set of ids.
        """
        with self._write_lock:
            snapshot = RingSnapshot()
            for node_id in sorted(set(node_ids)):
                snapshot = self._with_node(snapshot, node_id)
            self._snapshot = snapshot

        logger.debug(f"Rebuilt ring with {len(snapshot.nodes)} nodes")

    def _with_node(self, current: RingSnapshot, node_id: str) -> RingSnapshot:
        """Return a new snapshot with node_id's virtual nodes inserted."""
        if len(current.positions) + self.virtual_nodes > self.hash_function.space:
            raise RingFullError(
                f"cannot place {self.virtual_nodes} virtual nodes for {node_id}: "
                f"{len(current.positions)} of {self.hash_function.space} positions used"
            )

        positions = list(current.positions)
        owners = list(current.owners)
        occupied = set(positions)
        placed = []

        for i in range(self.virtual_nodes):
            label = f"{node_id}:{i}"
            position = self.hash_function(label)
            salt = 0
            # Deterministic re-derivation on collision
            while position in occupied:
                salt += 1
                position = self.hash_function(f"{label}#{salt}")
            if salt:
                logger.debug(f"Virtual node {label} collided, placed with salt {salt}")

            idx = bisect.bisect_left(positions, position)
            positions.insert(idx, position)
            owners.insert(idx, node_id)
            occupied.add(position)
            placed.append(position)

        placements = dict(current.placements)
        placements[node_id] = tuple(placed)
        return RingSnapshot(
            positions=tuple(positions),
            owners=tuple(owners),
            nodes=current.nodes | {node_id},
            placements=MappingProxyType(placements),
        )

    @staticmethod
    def _without_node(current: RingSnapshot, node_id: str) -> RingSnapshot:
        """Return a new snapshot without node_id's virtual nodes."""
        positions = list(current.positions)
        owners = list(current.owners)

        for position in current.placements[node_id]:
            idx = bisect.bisect_left(positions, position)
            del positions[idx]
            del owners[idx]

        placements = dict(current.placements)
        del placements[node_id]
        return RingSnapshot(
            positions=tuple(positions),
            owners=tuple(owners),
            nodes=current.nodes - {node_id},
            placements=MappingProxyType(placements),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def snapshot(self) -> RingSnapshot:
        """Current immutable ring state."""
        return self._snapshot

    def resolve(self, key: str) -> str:
        """
        Get the physical node responsible for a key.

        Raises:
            EmptyRingError: If no nodes are on the ring
        """
        return self._snapshot.lookup(self.hash_function(key))

    def resolve_n(self, key: str, n: int) -> List[str]:
        """
        Get up to n distinct physical nodes for a key, owner first.

        Returns fewer than n ids only when the ring has fewer than n
        physical nodes.

        Raises:
            EmptyRingError: If no nodes are on the ring
            ValueError: If n < 1
        """
        return self._snapshot.lookup_n(self.hash_function(key), n)

    def nodes(self) -> List[str]:
        """Physical node ids on the ring (sorted)."""
        return sorted(self._snapshot.nodes)

    def get_virtual_nodes(self) -> List[VirtualNode]:
        """All virtual nodes in ring order."""
        return self._snapshot.virtual_nodes()

    def positions_for(self, node_id: str) -> Tuple[int, ...]:
        """
        Positions owned by a physical node, in placement order.

        Raises:
            UnknownNodeError: If node_id is not on the ring
        """
        try:
            return self._snapshot.placements[node_id]
        except KeyError:
            raise UnknownNodeError(node_id) from None

    def key_distribution(self, keys: Iterable[str]) -> Dict[str, int]:
        """
        Count how many of the given keys each node owns.

        Useful for checking balance; every node appears, even with 0 keys.
        """
        snapshot = self._snapshot
        distribution = {node_id: 0 for node_id in snapshot.nodes}
        if not snapshot.positions:
            return distribution
        for key in keys:
            distribution[snapshot.lookup(self.hash_function(key))] += 1
        return distribution

    def __len__(self) -> int:
        """Number of physical nodes on the ring."""
        return len(self._snapshot.nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._snapshot.nodes

    def __repr__(self) -> str:
        snapshot = self._snapshot
        return (f"HashRing(nodes={len(snapshot.nodes)}, "
                f"virtual_nodes={len(snapshot.positions)}, "
                f"hash_function={self.hash_function!r})")
