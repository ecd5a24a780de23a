"""A compact fixed-size set of bits."""

from __future__ import annotations


class MiniBitSet:
    """A fixed number of bits packed eight to a byte, all initially clear."""

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError(f"bit set size must not be negative: {size}")
        self._size = size
        self._data = bytearray((size + 7) // 8)

    def __len__(self) -> int:
        return self._size

    def _locate(self, n: int) -> tuple[int, int]:
        if not 0 <= n < self._size:
            raise IndexError(f"bit {n} outside bit set of size {self._size}")
        return n // 8, 1 << (n % 8)

    def get(self, n: int) -> bool:
        """Return whether bit ``n`` is set."""
        index, mask = self._locate(n)
        return bool(self._data[index] & mask)

    def set(self, n: int) -> None:
        """Set bit ``n``."""
        index, mask = self._locate(n)
        self._data[index] |= mask

    def clear(self, n: int) -> None:
        """Clear bit ``n``."""
        index, mask = self._locate(n)
        self._data[index] &= ~mask & 0xFF