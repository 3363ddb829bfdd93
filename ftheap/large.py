"""Allocation, reallocation and release in the large size class."""

from __future__ import annotations

from .large_page import LargePage, LargePageList, create_large_page, destroy_large_page, realloc_large_page


def allocate_large(size: int, pages: LargePageList) -> LargePage:
    """Map a page of its own for an allocation of ``size`` bytes."""
    return create_large_page(size, pages)


def reallocate_large(page: LargePage, size: int, pages: LargePageList) -> LargePage:
    """Give the allocation on ``page`` room for ``size`` bytes."""
    return realloc_large_page(page, size, pages)


def deallocate_large(page: LargePage, pages: LargePageList) -> None:
    """Release the page of a large allocation."""
    destroy_large_page(page, pages)