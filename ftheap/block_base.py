"""Block header words: a size with two flag bits packed in its low bits."""

from __future__ import annotations

import enum

_WORD_MASK = (1 << 64) - 1


class BlockFlag(enum.IntFlag):
    """Flags kept in the low bits of a block header word."""

    ALLOCATED = 0b1
    LAST_BLOCK = 0b10


ALLOC_FLAGS = int(BlockFlag.ALLOCATED | BlockFlag.LAST_BLOCK)


def get_block_size(word: int) -> int:
    """Return the usable size stored in a header word, flags masked away."""
    return word & ~ALLOC_FLAGS & _WORD_MASK


def is_allocated(word: int) -> bool:
    """Tell whether the header word marks its block as in use."""
    return bool(word & BlockFlag.ALLOCATED)


def is_last_block(word: int) -> bool:
    """Tell whether the header word marks the first or last block of a page."""
    return bool(word & BlockFlag.LAST_BLOCK)


def with_flag(word: int, flag: int, state: bool) -> int:
    """Return ``word`` with ``flag`` set or cleared."""
    flag = int(flag)
    if state:
        return (word | flag) & _WORD_MASK
    return word & ~flag & _WORD_MASK


def with_size(word: int, size: int) -> int:
    """Return ``word`` carrying ``size`` while keeping its flags."""
    return ((word & ALLOC_FLAGS) | (size & ~ALLOC_FLAGS)) & _WORD_MASK