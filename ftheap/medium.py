"""Allocation, reallocation and release in the small size class."""

from __future__ import annotations

from .medium_block import (
    MediumBlock,
    allocate_medium_block,
    deallocate_medium_block,
    reallocate_medium_block,
)
from .medium_page import MediumPage, MediumPageList, create_medium_page, destroy_medium_page
from .memory import DoubleFreeError, OutOfMemoryError


def allocate_medium(size: int, set_zero: bool, pages: MediumPageList) -> MediumBlock:
    """Reserve a block of at least ``size`` bytes, mapping a page if needed.

    With ``set_zero`` the data of a reused block is zeroed; new pages come
    zeroed already. Raises ``OutOfMemoryError`` when no block can be found.
    """
    for page in pages:
        block = allocate_medium_block(size, page.free_list, page.allocated_list)
        if block is not None:
            if set_zero:
                block.memory.bzero(block.data, block.data_end)
            return block

    page = create_medium_page(pages.memory.limits.small_page_size, pages)
    block = allocate_medium_block(size, page.free_list, page.allocated_list)
    if block is None:
        raise OutOfMemoryError(f"no block of {size} bytes fits on a new page")
    return block


def reallocate_medium(
    block: MediumBlock, size: int, page: MediumPage, pages: MediumPageList
) -> MediumBlock:
    """Give ``block`` room for ``size`` bytes, moving it to another page if needed."""
    new_block = reallocate_medium_block(block, size, page.free_list, page.allocated_list)
    if new_block is not None:
        return new_block

    new_block = allocate_medium(size, False, pages)
    block.copy_data_to(new_block)
    deallocate_medium(block, page, pages)
    return new_block


def _is_last_page(page: MediumPage, pages: MediumPageList) -> bool:
    return pages.head == page and page.next is None


def _is_last_block_on_page(block: MediumBlock, page: MediumPage) -> bool:
    head = page.allocated_list.head
    return (
        head is not None
        and block == head
        and block.next_ptr is None
        and block.prev_ptr is None
    )


def deallocate_medium(block: MediumBlock, page: MediumPage, pages: MediumPageList) -> None:
    """Free ``block``; unmap its page when it was the page's last allocation.

    The only page of the list is kept. Raises ``DoubleFreeError`` when the
    block is not in use.
    """
    if not block.allocated:
        raise DoubleFreeError(f"block at {block.address:#x} is not allocated")
    if _is_last_block_on_page(block, page) and not _is_last_page(page, pages):
        destroy_medium_page(page, pages)
        return
    deallocate_medium_block(block, page.free_list, page.allocated_list)