"""
Ring-Cache Configuration Settings

This module contains the configuration constants for the routing layer.
Every value can be overridden through a RING_CACHE_* environment variable;
components also accept explicit constructor arguments that take precedence.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class Settings:
    """Routing layer configuration settings."""

    # Ring settings
    VIRTUAL_NODES: int = int(os.environ.get("RING_CACHE_VIRTUAL_NODES", "160"))
    HASH_ALGORITHM: str = os.environ.get("RING_CACHE_HASH_ALGORITHM", "sha256")
    HASH_WIDTH_BITS: int = int(os.environ.get("RING_CACHE_HASH_WIDTH_BITS", "64"))

    # Replication settings
    REPLICATION_FACTOR: int = int(os.environ.get("RING_CACHE_REPLICATION_FACTOR", "2"))
    WRITE_QUORUM: int = int(os.environ.get("RING_CACHE_WRITE_QUORUM", "1"))

    # Dispatch settings
    REQUEST_TIMEOUT: float = float(os.environ.get("RING_CACHE_REQUEST_TIMEOUT", "5.0"))
    PARALLEL_DISPATCH: bool = _env_bool("RING_CACHE_PARALLEL_DISPATCH")

    # In-memory backend settings
    MAX_KEYS: int = int(os.environ.get("RING_CACHE_MAX_KEYS", "10000"))

    # Logging settings
    DEBUG: bool = _env_bool("RING_CACHE_DEBUG")
    LOG_LEVEL: str = os.environ.get("RING_CACHE_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
