"""
Hashing Module

Maps keys and virtual-node labels onto the ring's integer space.

The digest is computed with hashlib and reduced to the ring width by
keeping its leading bytes (big-endian). With the defaults this is the
first 8 bytes of a SHA256 digest.
"""

import hashlib
from typing import Optional, Union

from ..config.settings import settings

# Only digests with at least 128 bits are accepted
MIN_DIGEST_BITS = 128


class HashFunction:
    """
    Deterministic hash onto a fixed-width unsigned integer space.

    Usage:
        hash_fn = HashFunction()               # sha256 truncated to 64 bits
        position = hash_fn("node-a:0")         # int in [0, 2**64)

    Attributes:
        algorithm: hashlib algorithm name
        width_bits: Width of the ring space in bits
    """

    def __init__(self, algorithm: Optional[str] = None, width_bits: Optional[int] = None):
        """
        Initialize the hash function.

        Args:
            algorithm: hashlib algorithm (default from settings.HASH_ALGORITHM)
            width_bits: Ring width in bits, a multiple of 8
                        (default from settings.HASH_WIDTH_BITS)

        Raises:
            ValueError: If the algorithm is unknown or too narrow, or the
                        width is not a positive multiple of 8 that fits
                        in the digest
        """
        self.algorithm = (algorithm or settings.HASH_ALGORITHM).lower()
        self.width_bits = width_bits if width_bits is not None else settings.HASH_WIDTH_BITS

        if self.algorithm not in hashlib.algorithms_guaranteed:
            raise ValueError(f"Unsupported hash algorithm: {self.algorithm}")

        # shake_* digests have no fixed size
        if self.algorithm.startswith("shake_"):
            raise ValueError(f"Variable-length digest not supported: {self.algorithm}")

        digest_bits = hashlib.new(self.algorithm).digest_size * 8
        if digest_bits < MIN_DIGEST_BITS:
            raise ValueError(
                f"{self.algorithm} produces {digest_bits} bits, need at least {MIN_DIGEST_BITS}"
            )
        if self.width_bits <= 0 or self.width_bits % 8 != 0:
            raise ValueError(f"width_bits must be a positive multiple of 8: {self.width_bits}")
        if self.width_bits > digest_bits:
            raise ValueError(f"width_bits {self.width_bits} exceeds {self.algorithm} digest size")

        self._width_bytes = self.width_bits // 8

    @property
    def space(self) -> int:
        """Number of distinct positions on the ring."""
        return 1 << self.width_bits

    def __call__(self, data: Union[str, bytes]) -> int:
        """Hash a key or label (str is UTF-8 encoded) to a ring position."""
        if isinstance(data, str):
            data = data.encode('utf-8')
        digest = hashlib.new(self.algorithm, data).digest()
        return int.from_bytes(digest[:self._width_bytes], byteorder='big')

    def __repr__(self) -> str:
        return f"HashFunction(algorithm={self.algorithm!r}, width_bits={self.width_bits})"
