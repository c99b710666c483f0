"""
Cluster Error Taxonomy

Structural errors (duplicate/unknown node, empty ring) are raised
immediately by the ring and the registry. Request errors (not found,
all replicas failed, quorum not met) are raised by the router and carry
the RequestResult that describes what each node did.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .router import RequestResult


class RingCacheError(Exception):
    """Base class for all routing layer errors."""


class DuplicateNodeError(RingCacheError):
    """A node with the same id is already part of the ring."""

    def __init__(self, node_id: str):
        super().__init__(f"node already registered: {node_id}")
        self.node_id = node_id


class UnknownNodeError(RingCacheError, KeyError):
    """The node id is not part of the ring or registry."""

    def __init__(self, node_id: str):
        super().__init__(f"unknown node: {node_id}")
        self.node_id = node_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class EmptyRingError(RingCacheError, LookupError):
    """A lookup was attempted on a ring with no nodes."""

    def __init__(self, message: str = "hash ring is empty"):
        super().__init__(message)


class RingFullError(RingCacheError):
    """No free position is left in the hash space for a virtual node."""


class RequestError(RingCacheError):
    """Base class for errors raised by a routed request."""

    def __init__(self, message: str, result: Optional["RequestResult"] = None):
        super().__init__(message)
        self.result = result

    @property
    def failed(self) -> dict:
        """Per-node failures observed while serving the request."""
        return dict(self.result.failed) if self.result is not None else {}


class NotFoundError(RequestError):
    """No queried replica holds the key."""


class AllReplicasFailedError(RequestError):
    """Every contacted node errored or timed out."""


class QuorumNotMetError(RequestError):
    """Some writes succeeded, but fewer than the configured write quorum."""
