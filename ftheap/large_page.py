"""Pages that each hold a single large allocation, and the list of them.

A large page starts with a header (size, next, prev) and ends with a trailer
word repeating the size, so that overflow past the data can be detected.
"""

from __future__ import annotations

from typing import Iterator

from .memory import NULL, WORD_SIZE, OutOfMemoryError, VirtualMemory, align_size

PAGE_HEADER_SIZE = 3 * WORD_SIZE
PAGE_END_SIZE = WORD_SIZE
_SIZE_OFFSET = 0
_NEXT_OFFSET = WORD_SIZE
_PREV_OFFSET = 2 * WORD_SIZE


class LargePage:
    """A view of a large page header at ``address`` in ``memory``."""

    __slots__ = ("memory", "address")

    def __init__(self, memory: VirtualMemory, address: int) -> None:
        self.memory = memory
        self.address = address

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LargePage):
            return NotImplemented
        return self.memory is other.memory and self.address == other.address

    def __hash__(self) -> int:
        return hash((id(self.memory), self.address))

    def __repr__(self) -> str:
        return f"LargePage({self.address:#x})"

    def _read(self, offset: int) -> int:
        return self.memory.read_word(self.address + offset)

    def _write(self, offset: int, value: int) -> None:
        self.memory.write_word(self.address + offset, value)

    def _page_at(self, offset: int) -> LargePage | None:
        address = self._read(offset)
        return None if address == NULL else LargePage(self.memory, address)

    @property
    def size(self) -> int:
        """Mapped size of the page in bytes, header and trailer included."""
        return self._read(_SIZE_OFFSET)

    @size.setter
    def size(self, value: int) -> None:
        self._write(_SIZE_OFFSET, value)

    @property
    def next(self) -> LargePage | None:
        """The following page in the page list."""
        return self._page_at(_NEXT_OFFSET)

    @next.setter
    def next(self, page: LargePage | None) -> None:
        self._write(_NEXT_OFFSET, NULL if page is None else page.address)

    @property
    def prev(self) -> LargePage | None:
        """The preceding page in the page list."""
        return self._page_at(_PREV_OFFSET)

    @prev.setter
    def prev(self, page: LargePage | None) -> None:
        self._write(_PREV_OFFSET, NULL if page is None else page.address)

    @property
    def data(self) -> int:
        """Address of the first usable byte."""
        return self.address + PAGE_HEADER_SIZE

    @property
    def data_size(self) -> int:
        """Usable bytes on the page."""
        return self.size - (PAGE_HEADER_SIZE + PAGE_END_SIZE)

    @property
    def end(self) -> int:
        """Address of the trailer word at the end of the page."""
        return self.address + (self.size - PAGE_END_SIZE)

    @property
    def end_size(self) -> int:
        """The size recorded in the trailer word."""
        return self.memory.read_word(self.end)

    @end_size.setter
    def end_size(self, value: int) -> None:
        self.memory.write_word(self.end, value)

    def is_corrupted(self) -> bool:
        """Tell whether the trailer no longer matches the header."""
        return self.end_size != self.size


class LargePageList:
    """A doubly linked list of large pages, newest first."""

    def __init__(self, memory: VirtualMemory) -> None:
        self.memory = memory
        self._head = NULL

    @property
    def head(self) -> LargePage | None:
        """The first page of the list."""
        return None if self._head == NULL else LargePage(self.memory, self._head)

    def add(self, page: LargePage) -> None:
        """Put ``page`` at the front of the list."""
        head = self.head
        if head is not None:
            page.next = head
            head.prev = page
        self._head = page.address

    def remove(self, page: LargePage) -> LargePage:
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

    def find(self, ptr: int | None) -> LargePage | None:
        """Return the page whose data starts at ``ptr``, if any."""
        return next((page for page in self if page.data == ptr), None)

    def __iter__(self) -> Iterator[LargePage]:
        address = self._head
        while address != NULL:
            page = LargePage(self.memory, address)
            following = page._read(_NEXT_OFFSET)
            yield page
            address = following


def create_large_page(size: int, pages: LargePageList) -> LargePage:
    """Map a page with at least ``size`` usable bytes and list it.

    Raises ``OutOfMemoryError`` when no memory can be mapped.
    """
    memory = pages.memory
    size = align_size(size + PAGE_HEADER_SIZE + PAGE_END_SIZE, memory.limits.page_size)
    page = LargePage(memory, memory.mmap(size))
    page.next = None
    page.prev = None
    page.size = size
    page.end_size = size
    pages.add(page)
    return page


def destroy_large_page(page: LargePage, pages: LargePageList) -> None:
    """Unlink ``page`` from ``pages`` and unmap it."""
    pages.remove(page)
    pages.memory.munmap(page.address, page.size)


def realloc_large_page(page: LargePage, size: int, pages: LargePageList) -> LargePage:
    """Return a page with room for ``size`` bytes holding the data of ``page``.

    The page itself is returned when it is already large enough. Otherwise the
    data moves to a new page and the old one is destroyed, also when the new
    page cannot be mapped; the ``OutOfMemoryError`` is then raised.
    """
    page_size = page.data_size
    if page_size >= size:
        return page
    try:
        new_page = create_large_page(size, pages)
        pages.memory.memcpy(page.data, new_page.data, page_size)
    finally:
        destroy_large_page(page, pages)
    return new_page