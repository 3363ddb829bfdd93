"""Simulated virtual memory: mapped regions addressed by plain integers.

Addresses are ``int`` values and ``NULL`` (``0``) is never mapped. Words are
unsigned 64-bit little-endian values, like ``size_t`` on common 64-bit
platforms.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass

WORD_SIZE = 8
WORD_MASK = (1 << (8 * WORD_SIZE)) - 1
NULL = 0
ALIGNMENT = 2 * WORD_SIZE
DEFAULT_PAGE_SIZE = 4096


class HeapError(Exception):
    """Base class for every error the heap reports."""


class InvalidPointerError(HeapError):
    """An address is not known to the heap or lies outside mapped memory."""


class DoubleFreeError(HeapError):
    """A block was released although it was not in use."""


class OutOfMemoryError(HeapError):
    """No more memory could be mapped."""


def align_size(size: int, alignment: int) -> int:
    """Round ``size`` up to a multiple of ``alignment`` (a power of two)."""
    return (size + alignment - 1) & ~(alignment - 1)


def is_aligned(address: int, alignment: int) -> bool:
    """Tell whether ``address`` is a multiple of ``alignment``."""
    return address % alignment == 0


def is_in_region(ptr: int | None, region_start: int, region_size: int) -> bool:
    """Tell whether ``ptr`` lies in ``[region_start, region_start + region_size)``."""
    if ptr is None:
        return False
    return region_start <= ptr < region_start + region_size


@dataclass(frozen=True)
class Limits:
    """Size classes of the allocator, derived from the system page size."""

    page_size: int
    alignment: int
    tiny_page_size: int
    small_page_size: int
    tiny_block_size: int
    small_block_size: int


class VirtualMemory:
    """A private address space handing out zeroed, page-aligned mappings."""

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE, capacity: int | None = None) -> None:
        if page_size < ALIGNMENT or page_size & (page_size - 1):
            raise ValueError(f"page size must be a power of two of at least {ALIGNMENT}")
        if capacity is not None and capacity < 0:
            raise ValueError("capacity must not be negative")
        self._page_size = page_size
        self._capacity = capacity
        self._regions: dict[int, bytearray] = {}
        self._starts: list[int] = []
        self._mapped = 0
        # Leave low addresses unmapped so that NULL and small integers never resolve.
        self._next = page_size * 256

    @property
    def limits(self) -> Limits:
        """The allocator size classes for this address space."""
        tiny_page = self._page_size * 16
        small_page = self._page_size * 256
        return Limits(
            page_size=self._page_size,
            alignment=ALIGNMENT,
            tiny_page_size=tiny_page,
            small_page_size=small_page,
            tiny_block_size=tiny_page // 128,
            small_block_size=small_page // 128,
        )

    def mmap(self, size: int) -> int:
        """Map a zeroed region of at least ``size`` bytes and return its address."""
        if size <= 0:
            raise ValueError("mapping size must be positive")
        size = align_size(size, self._page_size)
        if self._capacity is not None and self._mapped + size > self._capacity:
            raise OutOfMemoryError(f"cannot map {size} more bytes")
        address = self._next
        # One unmapped guard page separates consecutive mappings.
        self._next += size + self._page_size
        self._regions[address] = bytearray(size)
        bisect.insort(self._starts, address)
        self._mapped += size
        return address

    def munmap(self, address: int, size: int) -> None:
        """Unmap the region that starts at ``address`` and spans ``size`` bytes."""
        region = self._regions.get(address)
        if region is None or align_size(size, self._page_size) != len(region):
            raise InvalidPointerError(f"no mapping of {size} bytes at {address:#x}")
        del self._regions[address]
        self._starts.remove(address)
        self._mapped -= len(region)

    def is_mapped(self, address: int) -> bool:
        """Tell whether ``address`` lies inside a mapped region."""
        try:
            self._locate(address, 1)
        except InvalidPointerError:
            return False
        return True

    def _locate(self, address: int, length: int) -> tuple[bytearray, int]:
        if length < 0:
            raise ValueError("length must not be negative")
        index = bisect.bisect_right(self._starts, address) - 1
        if index >= 0:
            start = self._starts[index]
            region = self._regions[start]
            offset = address - start
            if offset + max(length, 1) <= len(region):
                return region, offset
        raise InvalidPointerError(
            f"access of {length} bytes at {address:#x} outside mapped memory"
        )

    def read_word(self, address: int) -> int:
        """Read one unsigned word."""
        region, offset = self._locate(address, WORD_SIZE)
        return int.from_bytes(region[offset:offset + WORD_SIZE], "little")

    def write_word(self, address: int, value: int) -> None:
        """Write one unsigned word, truncated to the word width."""
        region, offset = self._locate(address, WORD_SIZE)
        region[offset:offset + WORD_SIZE] = (value & WORD_MASK).to_bytes(WORD_SIZE, "little")

    def read_bytes(self, address: int, size: int) -> bytes:
        """Read ``size`` bytes starting at ``address``."""
        region, offset = self._locate(address, size)
        return bytes(region[offset:offset + size])

    def write_bytes(self, address: int, data: bytes) -> None:
        """Write ``data`` starting at ``address``."""
        region, offset = self._locate(address, len(data))
        region[offset:offset + len(data)] = data

    def bzero(self, start: int, end: int) -> None:
        """Zero whole words from ``start`` until ``end`` is reached."""
        if end <= start:
            return
        length = align_size(end - start, WORD_SIZE)
        region, offset = self._locate(start, length)
        region[offset:offset + length] = bytes(length)

    def memcpy(self, src: int, dst: int, size: int) -> None:
        """Copy the whole words contained in ``size`` bytes from ``src`` to ``dst``."""
        length = size // WORD_SIZE * WORD_SIZE
        if length <= 0:
            return
        self.write_bytes(dst, self.read_bytes(src, length))