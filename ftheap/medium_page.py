"""Pages holding small-class blocks, and the list the heap keeps them in."""

from __future__ import annotations

from typing import Iterator

from .block_base import BlockFlag, with_flag
from .medium_block import HEADER_SIZE, MediumBlock, MediumBlockList
from .memory import NULL, WORD_SIZE, VirtualMemory, align_size, is_in_region

PAGE_HEADER_SIZE = 5 * WORD_SIZE
_SIZE_OFFSET = 0
_ALLOCATED_LIST_OFFSET = WORD_SIZE
_FREE_LIST_OFFSET = 2 * WORD_SIZE
_NEXT_OFFSET = 3 * WORD_SIZE
_PREV_OFFSET = 4 * WORD_SIZE


class MediumPage:
    """A view of a small-class page header at ``address`` in ``memory``."""

    __slots__ = ("memory", "address")

    def __init__(self, memory: VirtualMemory, address: int) -> None:
        self.memory = memory
        self.address = address

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MediumPage):
            return NotImplemented
        return self.memory is other.memory and self.address == other.address

    def __hash__(self) -> int:
        return hash((id(self.memory), self.address))

    def __repr__(self) -> str:
        return f"MediumPage({self.address:#x})"

    def _read(self, offset: int) -> int:
        return self.memory.read_word(self.address + offset)

    def _write(self, offset: int, value: int) -> None:
        self.memory.write_word(self.address + offset, value)

    def _page_at(self, offset: int) -> MediumPage | None:
        address = self._read(offset)
        return None if address == NULL else MediumPage(self.memory, address)

    @property
    def size(self) -> int:
        """Mapped size of the page in bytes, header included."""
        return self._read(_SIZE_OFFSET)

    @size.setter
    def size(self, value: int) -> None:
        self._write(_SIZE_OFFSET, value)

    @property
    def allocated_list(self) -> MediumBlockList:
        """The list of blocks in use on this page."""
        return MediumBlockList(self.memory, self.address + _ALLOCATED_LIST_OFFSET)

    @property
    def free_list(self) -> MediumBlockList:
        """The list of free blocks on this page."""
        return MediumBlockList(self.memory, self.address + _FREE_LIST_OFFSET)

    @property
    def next(self) -> MediumPage | None:
        """The following page in the page list."""
        return self._page_at(_NEXT_OFFSET)

    @next.setter
    def next(self, page: MediumPage | None) -> None:
        self._write(_NEXT_OFFSET, NULL if page is None else page.address)

    @property
    def prev(self) -> MediumPage | None:
        """The preceding page in the page list."""
        return self._page_at(_PREV_OFFSET)

    @prev.setter
    def prev(self, page: MediumPage | None) -> None:
        self._write(_PREV_OFFSET, NULL if page is None else page.address)

    def first_block(self) -> MediumBlock | None:
        """The listed block with the lowest address, or ``None`` if none is listed."""
        blocks = [*self.allocated_list, *self.free_list]
        return min(blocks, key=lambda block: block.address, default=None)


class MediumPageList:
    """A doubly linked list of small-class pages, newest first."""

    def __init__(self, memory: VirtualMemory) -> None:
        self.memory = memory
        self._head = NULL

    @property
    def head(self) -> MediumPage | None:
        """The first page of the list."""
        return None if self._head == NULL else MediumPage(self.memory, self._head)

    def add(self, page: MediumPage) -> None:
        """Put ``page`` at the front of the list."""
        head = self.head
        if head is not None:
            page.next = head
            head.prev = page
        self._head = page.address

    def remove(self, page: MediumPage) -> MediumPage:
        """Unlink ``page`` from the list and return it."""
        prev, nxt = page.prev, page.next
        if self._head == page.address:
            self._head = NULL if nxt is None else nxt.address
        if prev is not None:
            prev.next = nxt
        if nxt is not None:
            nxt.prev = prev
        page.next = None
        page.prev = None
        return page

    def find(self, ptr: int | None) -> MediumPage | None:
        """Return the page whose mapping contains ``ptr``, if any."""
        return next(
            (page for page in self if is_in_region(ptr, page.address, page.size)),
            None,
        )

    def __iter__(self) -> Iterator[MediumPage]:
        address = self._head
        while address != NULL:
            page = MediumPage(self.memory, address)
            following = page._read(_NEXT_OFFSET)
            yield page
            address = following


def create_medium_page(size: int, pages: MediumPageList) -> MediumPage:
    """Map a page of at least ``size`` bytes, lay out one free block and list it.

    Raises ``OutOfMemoryError`` when no memory can be mapped.
    """
    memory = pages.memory
    size = align_size(size, memory.limits.page_size)
    page = MediumPage(memory, memory.mmap(size))
    page.next = None
    page.prev = None
    page.size = size
    page.allocated_list.head = None

    block = MediumBlock(memory, page.address + PAGE_HEADER_SIZE)
    curr = size - (HEADER_SIZE + PAGE_HEADER_SIZE)
    curr = with_flag(curr, BlockFlag.ALLOCATED, False)
    block.curr = with_flag(curr, BlockFlag.LAST_BLOCK, True)
    block.prev = with_flag(0, BlockFlag.LAST_BLOCK, True)
    block.next_ptr = None
    block.prev_ptr = None
    page.free_list.head = block

    pages.add(page)
    return page


def destroy_medium_page(page: MediumPage, pages: MediumPageList) -> None:
    """Unlink ``page`` from ``pages`` and unmap it."""
    pages.remove(page)
    pages.memory.munmap(page.address, page.size)