"""
Storage Backend Interface

The router never touches a node's key space directly. It talks to one
StorageBackend per physical node, obtained from a connector:

    connector(node: PhysicalNode) -> StorageBackend

Backends report failures by raising; absence on read is not a failure.
Implementations must be safe to call concurrently for different keys.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

from ..cluster.registry import PhysicalNode


class StorageBackend(ABC):
    """Per-node storage collaborator."""

    @abstractmethod
    async def write(self, key: str, value: bytes) -> None:
        """Store value under key."""

    @abstractmethod
    async def read(self, key: str) -> Tuple[Optional[bytes], bool]:
        """
        Read a key.

        Returns:
            (value, True) if present, (None, False) if absent
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if the key was present, False otherwise
        """

    async def close(self) -> None:
        """Release any resources held for the node."""


Connector = Callable[[PhysicalNode], StorageBackend]
