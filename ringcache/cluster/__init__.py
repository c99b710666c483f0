"""
Cluster module for Ring-Cache.

This module provides the key routing layer:
- Hashing of keys and virtual nodes onto the ring
- The consistent hash ring and its snapshots
- Node membership (registry)
- Request routing and replication
"""

from .errors import (
    AllReplicasFailedError,
    DuplicateNodeError,
    EmptyRingError,
    NotFoundError,
    QuorumNotMetError,
    RequestError,
    RingCacheError,
    RingFullError,
    UnknownNodeError,
)
from .hashing import HashFunction
from .registry import NodeRegistry, PhysicalNode, RegistryView
from .ring import HashRing, RingSnapshot, VirtualNode
from .router import DistributedCacheRouter, RequestResult, RequestState

__all__ = [
    'AllReplicasFailedError',
    'DistributedCacheRouter',
    'DuplicateNodeError',
    'EmptyRingError',
    'HashFunction',
    'HashRing',
    'NodeRegistry',
    'NotFoundError',
    'PhysicalNode',
    'QuorumNotMetError',
    'RegistryView',
    'RequestError',
    'RequestResult',
    'RequestState',
    'RingCacheError',
    'RingFullError',
    'RingSnapshot',
    'UnknownNodeError',
    'VirtualNode',
]
