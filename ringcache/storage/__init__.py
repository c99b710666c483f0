"""
Storage module for Ring-Cache.

Defines the per-node storage collaborator the router dispatches to, and
an in-memory implementation.
"""

from .backend import Connector, StorageBackend
from .memory import InMemoryBackend, InMemoryConnector

__all__ = ["Connector", "StorageBackend", "InMemoryBackend", "InMemoryConnector"]
