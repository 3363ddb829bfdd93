"""Allocation, reallocation and release in the tiny size class."""

from __future__ import annotations

from .memory import DoubleFreeError, OutOfMemoryError
from .small_block import (
    SmallBlock,
    allocate_small_block,
    deallocate_small_block,
    reallocate_small_block,
)
from .small_page import SmallPage, SmallPageList, create_small_page, destroy_small_page


def allocate_small(size: int, set_zero: bool, pages: SmallPageList) -> SmallBlock:
    """Reserve a tiny block of at least ``size`` bytes, mapping a page if needed.

    With ``set_zero`` the data of a reused block is zeroed; new pages come
    zeroed already. Raises ``OutOfMemoryError`` when no block can be found.
    """
    for page in pages:
        block = allocate_small_block(size, page.block_list)
        if block is not None:
            if set_zero:
                block.memory.bzero(block.data, block.data_end)
            return block

    page = create_small_page(pages.memory.limits.tiny_page_size, pages)
    block = allocate_small_block(size, page.block_list)
    if block is None:
        raise OutOfMemoryError(f"no tiny block of {size} bytes fits on a new page")
    return block


def reallocate_small(
    block: SmallBlock, size: int, page: SmallPage, pages: SmallPageList
) -> SmallBlock:
    """Give ``block`` room for ``size`` bytes, moving it to another page if needed."""
    new_block = reallocate_small_block(block, size, page.block_list)
    if new_block is not None:
        return new_block

    new_block = allocate_small(size, False, pages)
    block.copy_data_to(new_block)
    deallocate_small(block, page, pages)
    return new_block


def _is_last_page(page: SmallPage, pages: SmallPageList) -> bool:
    return pages.head == page and page.next is None


def deallocate_small(block: SmallBlock, page: SmallPage, pages: SmallPageList) -> None:
    """Free ``block``; unmap its page when it empties and is not the only page.

    Raises ``DoubleFreeError`` when the block is not in use.
    """
    if not block.allocated:
        raise DoubleFreeError(f"tiny block at {block.address:#x} is not allocated")
    block = deallocate_small_block(block)
    if block == page.block_list and block.last and not _is_last_page(page, pages):
        destroy_small_page(page, pages)