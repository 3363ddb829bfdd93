"""Blocks of the small size class, kept in free and allocated lists.

A block header holds the previous block's header word (``prev``), its own
header word (``curr``) and the two links of the list the block is on. The
blocks of a page lie back to back in memory, so the neighbours of a block are
found from the sizes in the header words.
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
from .memory import NULL, WORD_SIZE, InvalidPointerError, VirtualMemory

HEADER_SIZE = 4 * WORD_SIZE
_PREV_OFFSET = 0
_CURR_OFFSET = WORD_SIZE
_NEXT_PTR_OFFSET = 2 * WORD_SIZE
_PREV_PTR_OFFSET = 3 * WORD_SIZE


class MediumBlock:
    """A view of a small-class block header at ``address`` in ``memory``."""

    __slots__ = ("memory", "address")

    def __init__(self, memory: VirtualMemory, address: int) -> None:
        self.memory = memory
        self.address = address

    @classmethod
    def from_data(cls, memory: VirtualMemory, ptr: int) -> MediumBlock:
        """Return the block whose data region starts at ``ptr``."""
        return cls(memory, ptr - HEADER_SIZE)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MediumBlock):
            return NotImplemented
        return self.memory is other.memory and self.address == other.address

    def __hash__(self) -> int:
        return hash((id(self.memory), self.address))

    def __repr__(self) -> str:
        return f"MediumBlock({self.address:#x})"

    def _block_at(self, offset: int) -> MediumBlock | None:
        address = self.memory.read_word(self.address + offset)
        return None if address == NULL else MediumBlock(self.memory, address)

    def _link(self, offset: int, block: MediumBlock | None) -> None:
        self.memory.write_word(self.address + offset, NULL if block is None else block.address)

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
    def next_ptr(self) -> MediumBlock | None:
        """The following block in the list this block is on."""
        return self._block_at(_NEXT_PTR_OFFSET)

    @next_ptr.setter
    def next_ptr(self, block: MediumBlock | None) -> None:
        self._link(_NEXT_PTR_OFFSET, block)

    @property
    def prev_ptr(self) -> MediumBlock | None:
        """The preceding block in the list this block is on."""
        return self._block_at(_PREV_PTR_OFFSET)

    @prev_ptr.setter
    def prev_ptr(self, block: MediumBlock | None) -> None:
        self._link(_PREV_PTR_OFFSET, block)

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

    def next_block(self) -> MediumBlock | None:
        """The following block in memory, or ``None`` for the last block."""
        curr = self.curr
        if is_last_block(curr):
            return None
        return MediumBlock(self.memory, self.address + HEADER_SIZE + get_block_size(curr))

    def prev_block(self) -> MediumBlock | None:
        """The preceding block in memory, or ``None`` for the first block."""
        prev = self.prev
        if is_last_block(prev):
            return None
        return MediumBlock(self.memory, self.address - (HEADER_SIZE + get_block_size(prev)))

    def is_corrupted(self) -> bool:
        """Tell whether the data of this block overflowed into the next header."""
        try:
            nxt = self.next_block()
            if nxt is None:
                return False
            return nxt.prev_block() != self
        except InvalidPointerError:
            return True

    def copy_data_to(self, dst: MediumBlock) -> None:
        """Copy this block's data into ``dst``."""
        self.memory.memcpy(self.data, dst.data, self.size)

    def _absorb(self, nxt: MediumBlock) -> MediumBlock:
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

    def _set_next_flag(self, flag: BlockFlag, state: bool) -> None:
        nxt = self.next_block()
        if nxt is not None:
            nxt.prev = with_flag(nxt.prev, flag, state)


class MediumBlockList:
    """A doubly linked list of blocks, newest first.

    The head pointer lives in the memory word at ``slot``; without a slot it is
    kept by the list object itself.
    """

    def __init__(self, memory: VirtualMemory, slot: int | None = None) -> None:
        self.memory = memory
        self.slot = slot
        self._head = NULL

    def _head_address(self) -> int:
        if self.slot is None:
            return self._head
        return self.memory.read_word(self.slot)

    @property
    def head(self) -> MediumBlock | None:
        """The first block of the list."""
        address = self._head_address()
        return None if address == NULL else MediumBlock(self.memory, address)

    @head.setter
    def head(self, block: MediumBlock | None) -> None:
        address = NULL if block is None else block.address
        if self.slot is None:
            self._head = address
        else:
            self.memory.write_word(self.slot, address)

    def add(self, block: MediumBlock) -> None:
        """Put ``block`` at the front of the list."""
        head = self.head
        block.next_ptr = head
        if head is not None:
            head.prev_ptr = block
        self.head = block
        block.prev_ptr = None

    def remove(self, block: MediumBlock) -> MediumBlock:
        """Unlink ``block`` from the list and return it."""
        prev, nxt = block.prev_ptr, block.next_ptr
        if self._head_address() == block.address:
            self.head = nxt
        if prev is not None:
            prev.next_ptr = nxt
        if nxt is not None:
            nxt.prev_ptr = prev
        block.next_ptr = None
        block.prev_ptr = None
        return block

    def find(self, ptr: int | None) -> MediumBlock | None:
        """Return the listed block whose data starts at ``ptr``, if any."""
        return next((block for block in self if block.data == ptr), None)

    def find_free(self, size: int) -> MediumBlock | None:
        """Return the best fitting block with at least ``size`` bytes."""
        best: MediumBlock | None = None
        best_size = 0
        for block in self:
            block_size = block.size
            if block_size == size:
                return block
            if block_size > size and (best is None or block_size - size < best_size - size):
                best, best_size = block, block_size
        return best

    def __iter__(self) -> Iterator[MediumBlock]:
        address = self._head_address()
        while address != NULL:
            block = MediumBlock(self.memory, address)
            following = self.memory.read_word(address + _NEXT_PTR_OFFSET)
            yield block
            address = following


def merge_medium_block(
    block: MediumBlock, merge_backwards: bool, free_list: MediumBlockList
) -> tuple[MediumBlock, bool]:
    """Coalesce ``block`` with its free neighbours, taking them off ``free_list``.

    Return the resulting block, which starts earlier when merged backwards,
    and whether any merge happened.
    """
    merged = False
    nxt = block.next_block()
    while nxt is not None and not nxt.allocated:
        free_list.remove(nxt)
        merged = True
        block = block._absorb(nxt)
        nxt = block.next_block()

    if merge_backwards:
        prev = block.prev_block()
        while prev is not None and not prev.allocated:
            free_list.remove(prev)
            merged = True
            block = prev._absorb(block)
            prev = block.prev_block()
    return block, merged


def split_medium_block(
    block: MediumBlock, split_size: int, free_list: MediumBlockList
) -> bool:
    """Cut ``block`` to ``split_size`` bytes; the rest becomes a free listed block.

    Return ``False`` when the block is too small to be split.
    """
    memory = block.memory
    block_size = block.size
    if block_size < split_size + memory.limits.tiny_block_size + HEADER_SIZE:
        return False

    new_block = MediumBlock(memory, block.data + split_size)
    word = with_size(new_block.curr, block_size - (split_size + HEADER_SIZE))
    word = with_flag(word, BlockFlag.ALLOCATED, False)
    if block.last:
        new_block.curr = with_flag(word, BlockFlag.LAST_BLOCK, True)
        block.curr = with_flag(block.curr, BlockFlag.LAST_BLOCK, False)
    else:
        new_block.curr = with_flag(word, BlockFlag.LAST_BLOCK, False)
        nxt = block.next_block()
        assert nxt is not None
        nxt.prev = new_block.curr

    block.curr = with_size(block.curr, split_size)
    new_block.prev = block.curr
    free_list.add(new_block)
    return True


def allocate_medium_block(
    size: int, free_list: MediumBlockList, allocated_list: MediumBlockList
) -> MediumBlock | None:
    """Move a best-fit free block of at least ``size`` bytes to the allocated list.

    Return ``None`` when no free block is large enough.
    """
    block = free_list.find_free(size)
    if block is None:
        return None
    split_medium_block(block, size, free_list)
    free_list.remove(block)
    block.curr = with_flag(block.curr, BlockFlag.ALLOCATED, True)
    block._set_next_flag(BlockFlag.ALLOCATED, True)
    allocated_list.add(block)
    return block


def deallocate_medium_block(
    block: MediumBlock, free_list: MediumBlockList, allocated_list: MediumBlockList
) -> MediumBlock:
    """Mark ``block`` free, coalesce it and list it as free; return the result."""
    allocated_list.remove(block)
    block, _ = merge_medium_block(block, True, free_list)
    block.curr = with_flag(block.curr, BlockFlag.ALLOCATED, False)
    block._set_next_flag(BlockFlag.ALLOCATED, False)
    free_list.add(block)
    return block


def reallocate_medium_block(
    block: MediumBlock,
    size: int,
    free_list: MediumBlockList,
    allocated_list: MediumBlockList,
) -> MediumBlock | None:
    """Give ``block`` room for ``size`` bytes on its own page.

    Grow in place when possible, otherwise move the data to another block on
    the page. Return ``None`` when the page has no room.
    """
    if block.size > size:
        return block

    # Only forward merges: the original data address has to stay valid.
    block, merged = merge_medium_block(block, False, free_list)
    if merged and block.size >= size:
        if block.last:
            split_medium_block(block, size, free_list)
        return block

    new_block = allocate_medium_block(size, free_list, allocated_list)
    if new_block is None:
        return None
    block.copy_data_to(new_block)
    deallocate_medium_block(block, free_list, allocated_list)
    return new_block