"""Pages holding tiny blocks, and the list the heap keeps them in."""

from __future__ import annotations

from typing import Iterator

from .block_base import BlockFlag, with_flag
from .memory import NULL, WORD_SIZE, VirtualMemory, align_size, is_in_region
from .small_block import HEADER_SIZE, SmallBlock

PAGE_HEADER_SIZE = 4 * WORD_SIZE
_SIZE_OFFSET = 0
_BLOCK_LIST_OFFSET = WORD_SIZE
_PREV_OFFSET = 2 * WORD_SIZE
_NEXT_OFFSET = 3 * WORD_SIZE


class SmallPage:
    """A view of a tiny page header at ``address`` in ``memory``."""

    __slots__ = ("memory", "address")

    def __init__(self, memory: VirtualMemory, address: int) -> None:
        self.memory = memory
        self.address = address

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SmallPage):
            return NotImplemented
        return self.memory is other.memory and self.address == other.address

    def __hash__(self) -> int:
        return hash((id(self.memory), self.address))

    def __repr__(self) -> str:
        return f"SmallPage({self.address:#x})"

    def _read(self, offset: int) -> int:
        return self.memory.read_word(self.address + offset)

    def _write(self, offset: int, value: int) -> None:
        self.memory.write_word(self.address + offset, value)

    def _page_at(self, offset: int) -> SmallPage | None:
        address = self._read(offset)
        return None if address == NULL else SmallPage(self.memory, address)

    @property
    def size(self) -> int:
        """Mapped size of the page in bytes, header included."""
        return self._read(_SIZE_OFFSET)

    @size.setter
    def size(self, value: int) -> None:
        self._write(_SIZE_OFFSET, value)

    @property
    def block_list(self) -> SmallBlock | None:
        """The first block on the page."""
        address = self._read(_BLOCK_LIST_OFFSET)
        return None if address == NULL else SmallBlock(self.memory, address)

    @block_list.setter
    def block_list(self, block: SmallBlock | None) -> None:
        self._write(_BLOCK_LIST_OFFSET, NULL if block is None else block.address)

    @property
    def next(self) -> SmallPage | None:
        """The following page in the page list."""
        return self._page_at(_NEXT_OFFSET)

    @next.setter
    def next(self, page: SmallPage | None) -> None:
        self._write(_NEXT_OFFSET, NULL if page is None else page.address)

    @property
    def prev(self) -> SmallPage | None:
        """The preceding page in the page list."""
        return self._page_at(_PREV_OFFSET)

    @prev.setter
    def prev(self, page: SmallPage | None) -> None:
        self._write(_PREV_OFFSET, NULL if page is None else page.address)


class SmallPageList:
    """A doubly linked list of tiny pages, newest first."""

    def __init__(self, memory: VirtualMemory) -> None:
        self.memory = memory
        self._head = NULL

    @property
    def head(self) -> SmallPage | None:
        """The first page of the list."""
        return None if self._head == NULL else SmallPage(self.memory, self._head)

    def add(self, page: SmallPage) -> None:
        """Put ``page`` at the front of the list."""
        head = self.head
        if head is not None:
            page.next = head
            head.prev = page
        self._head = page.address

    def remove(self, page: SmallPage) -> SmallPage:
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

    def find(self, ptr: int | None) -> SmallPage | None:
        """Return the page whose mapping contains ``ptr``, if any."""
        return next(
            (page for page in self if is_in_region(ptr, page.address, page.size)),
            None,
        )

    def __iter__(self) -> Iterator[SmallPage]:
        address = self._head
        while address != NULL:
            page = SmallPage(self.memory, address)
            following = page._read(_NEXT_OFFSET)
            yield page
            address = following


def create_small_page(size: int, pages: SmallPageList) -> SmallPage:
    """Map a page of at least ``size`` bytes, lay out one free block and list it.

    Raises ``OutOfMemoryError`` when no memory can be mapped.
    """
    memory = pages.memory
    size = align_size(size, memory.limits.page_size)
    page = SmallPage(memory, memory.mmap(size))
    page.next = None
    page.prev = None
    page.size = size

    block = SmallBlock(memory, page.address + PAGE_HEADER_SIZE)
    curr = size - (HEADER_SIZE + PAGE_HEADER_SIZE)
    curr = with_flag(curr, BlockFlag.ALLOCATED, False)
    block.curr = with_flag(curr, BlockFlag.LAST_BLOCK, True)
    block.prev = with_flag(0, BlockFlag.LAST_BLOCK, True)
    page.block_list = block

    pages.add(page)
    return page


def destroy_small_page(page: SmallPage, pages: SmallPageList) -> None:
    """Unlink ``page`` from ``pages`` and unmap it."""
    pages.remove(page)
    pages.memory.munmap(page.address, page.size)