"""Blocks of the tiny size class: two header words followed by the data.

A block header holds the previous block's header word (``prev``) and its own
header word (``curr``). The blocks of a page lie back to back in memory, so the
neighbours of a block are found from the sizes in these words.
"""

from __future__ import annotations

from typing import Iterator

from .block_base import (
    BlockFlag,
    get_block_size,
    is_allocated,
    is_last_block,
    with_flag,
    with_size,
)
from .memory import ALIGNMENT, WORD_SIZE, InvalidPointerError, VirtualMemory

HEADER_SIZE = 2 * WORD_SIZE
_PREV_OFFSET = 0
_CURR_OFFSET = WORD_SIZE


class SmallBlock:
    """A view of a tiny block header at ``address`` in ``memory``."""

    __slots__ = ("memory", "address")

    def __init__(self, memory: VirtualMemory, address: int) -> None:
        self.memory = memory
        self.address = address

    @classmethod
    def from_data(cls, memory: VirtualMemory, ptr: int) -> SmallBlock:
        """Return the block whose data region starts at ``ptr``."""
        return cls(memory, ptr - HEADER_SIZE)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SmallBlock):
            return NotImplemented
        return self.memory is other.memory and self.address == other.address

    def __hash__(self) -> int:
        return hash((id(self.memory), self.address))

    def __repr__(self) -> str:
        return f"SmallBlock({self.address:#x})"

    @property
    def prev(self) -> int:
        """The header word of the previous block in memory."""
        return self.memory.read_word(self.address + _PREV_OFFSET)

    @prev.setter
    def prev(self, word: int) -> None:
        self.memory.write_word(self.address + _PREV_OFFSET, word)

    @property
    def curr(self) -> int:
        """The header word of this block."""
        return self.memory.read_word(self.address + _CURR_OFFSET)

    @curr.setter
    def curr(self, word: int) -> None:
        self.memory.write_word(self.address + _CURR_OFFSET, word)

    @property
    def size(self) -> int:
        """Usable bytes in the block."""
        return get_block_size(self.curr)

    @property
    def allocated(self) -> bool:
        """Whether the block is in use."""
        return is_allocated(self.curr)

    @property
    def last(self) -> bool:
        """Whether the block is the last one on its page."""
        return is_last_block(self.curr)

    @property
    def data(self) -> int:
        """Address of the first usable byte."""
        return self.address + HEADER_SIZE

    @property
    def data_end(self) -> int:
        """Address just past the last usable byte."""
        return self.data + self.size

    def next_block(self) -> SmallBlock | None:
        """The following block in memory, or ``None`` for the last block."""
        curr = self.curr
        if is_last_block(curr):
            return None
        return SmallBlock(self.memory, self.address + HEADER_SIZE + get_block_size(curr))

    def prev_block(self) -> SmallBlock | None:
        """The preceding block in memory, or ``None`` for the first block."""
        prev = self.prev
        if is_last_block(prev):
            return None
        return SmallBlock(self.memory, self.address - (HEADER_SIZE + get_block_size(prev)))

    def is_corrupted(self) -> bool:
        """Tell whether the data of this block overflowed into the next header."""
        try:
            nxt = self.next_block()
            if nxt is None:
                return False
            return nxt.prev_block() != self
        except InvalidPointerError:
            return True

    def split(self, split_size: int) -> bool:
        """Cut the block to ``split_size`` bytes, turning the rest into a free block.

        Return ``False`` when the block is too small to be split.
        """
        block_size = self.size
        if block_size < split_size + ALIGNMENT + HEADER_SIZE:
            return False

        new_block = SmallBlock(self.memory, self.data + split_size)
        word = with_size(new_block.curr, block_size - (split_size + HEADER_SIZE))
        word = with_flag(word, BlockFlag.ALLOCATED, False)
        if self.last:
            new_block.curr = with_flag(word, BlockFlag.LAST_BLOCK, True)
            self.curr = with_flag(self.curr, BlockFlag.LAST_BLOCK, False)
        else:
            new_block.curr = with_flag(word, BlockFlag.LAST_BLOCK, False)
            nxt = self.next_block()
            assert nxt is not None
            nxt.prev = new_block.curr

        self.curr = with_size(self.curr, split_size)
        new_block.prev = self.curr
        return True

    def _absorb(self, nxt: SmallBlock) -> SmallBlock:
        self.curr = with_size(self.curr, self.size + nxt.size + HEADER_SIZE)
        if nxt.last:
            self.curr = with_flag(self.curr, BlockFlag.LAST_BLOCK, True)
        else:
            after = nxt.next_block()
            assert after is not None
            after.prev = self.curr
        nxt.curr = 0
        nxt.prev = 0
        return self

    def merge(self, merge_backwards: bool) -> tuple[SmallBlock, bool]:
        """Coalesce with free neighbours.

        Return the resulting block, which starts earlier when merged backwards,
        and whether any merge happened.
        """
        block = self
        merged = False
        nxt = block.next_block()
        while nxt is not None and not nxt.allocated:
            merged = True
            block._absorb(nxt)
            nxt = block.next_block()

        if merge_backwards:
            prev = block.prev_block()
            while prev is not None and not prev.allocated:
                merged = True
                block = prev._absorb(block)
                prev = block.prev_block()
        return block, merged

    def copy_data_to(self, dst: SmallBlock) -> None:
        """Copy this block's data into ``dst``."""
        self.memory.memcpy(self.data, dst.data, self.size)

    def _set_next_flag(self, flag: BlockFlag, state: bool) -> None:
        nxt = self.next_block()
        if nxt is not None:
            nxt.prev = with_flag(nxt.prev, flag, state)


def iter_small_blocks(first: SmallBlock | None) -> Iterator[SmallBlock]:
    """Yield ``first`` and every block after it in memory."""
    block = first
    while block is not None:
        yield block
        block = block.next_block()


def find_in_small_block_list(ptr: int | None, first: SmallBlock | None) -> SmallBlock | None:
    """Return the block whose data starts at ``ptr``, if any."""
    return next((block for block in iter_small_blocks(first) if block.data == ptr), None)


def find_free_small_block(first: SmallBlock | None, size: int) -> SmallBlock | None:
    """Return the first free block with at least ``size`` bytes."""
    return next(
        (
            block
            for block in iter_small_blocks(first)
            if not block.allocated and block.size >= size
        ),
        None,
    )


def allocate_small_block(size: int, first: SmallBlock | None) -> SmallBlock | None:
    """Reserve a free block of at least ``size`` bytes, or return ``None``."""
    block = find_free_small_block(first, size)
    if block is None:
        return None
    block.split(size)
    block.curr = with_flag(block.curr, BlockFlag.ALLOCATED, True)
    block._set_next_flag(BlockFlag.ALLOCATED, True)
    return block


def deallocate_small_block(block: SmallBlock) -> SmallBlock:
    """Mark ``block`` free and coalesce it; return the resulting block."""
    block, _ = block.merge(True)
    block.curr = with_flag(block.curr, BlockFlag.ALLOCATED, False)
    block._set_next_flag(BlockFlag.ALLOCATED, False)
    return block


def reallocate_small_block(
    block: SmallBlock, size: int, first: SmallBlock | None
) -> SmallBlock | None:
    """Give ``block`` room for ``size`` bytes on its own page.

    Grow in place when possible, otherwise move the data to another block on
    the page. Return ``None`` when the page has no room.
    """
    if block.size >= size:
        return block

    # Only forward merges: the original data address has to stay valid.
    block, merged = block.merge(False)
    if merged and block.size >= size:
        if block.last:
            block.split(size)
        return block

    new_block = allocate_small_block(size, first)
    if new_block is None:
        return None
    block.copy_data_to(new_block)
    deallocate_small_block(block)
    return new_block