"""Cache module for Ring-Cache."""

from .store import KVStore

__all__ = ["KVStore"]
