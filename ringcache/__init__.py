"""
Ring-Cache: Consistent-Hashing Router for a Distributed Key-Value Cache

Routes keys to cache nodes through a virtual-node hash ring, keeps key
movement minimal as nodes join and leave, and replicates writes across
the nodes that own a key.
"""

__version__ = "1.0.0"
