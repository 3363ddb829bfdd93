import pytest

from ftheap.block_base import BlockFlag, is_allocated, is_last_block, with_flag, with_size
from ftheap.medium_block import (
    HEADER_SIZE,
    MediumBlock,
    MediumBlockList,
    allocate_medium_block,
    deallocate_medium_block,
    merge_medium_block,
    reallocate_medium_block,
    split_medium_block,
)
from ftheap.medium_page import PAGE_HEADER_SIZE, MediumPageList, create_medium_page
from ftheap.memory import ALIGNMENT, VirtualMemory, align_size

NUM_BLOCKS = 50


@pytest.fixture
def memory():
    return VirtualMemory()


@pytest.fixture
def page(memory):
    return create_medium_page(memory.limits.small_page_size, MediumPageList(memory))


def _block_array(memory):
    base = memory.mmap(NUM_BLOCKS * 2 * HEADER_SIZE)
    alloc = MediumBlockList(memory)
    free = MediumBlockList(memory)
    blocks = []
    prev_word = 0
    for i in range(NUM_BLOCKS):
        block = MediumBlock(memory, base + i * 2 * HEADER_SIZE)
        word = with_flag(0, BlockFlag.ALLOCATED, i % 2 == 0)
        word = with_size(word, HEADER_SIZE)
        word = with_flag(word, BlockFlag.LAST_BLOCK, i + 1 == NUM_BLOCKS)
        block.curr = word
        block.prev = with_flag(prev_word, BlockFlag.LAST_BLOCK, i == 0)
        prev_word = word
        (alloc if i % 2 == 0 else free).add(block)
        blocks.append(block)
    return blocks, alloc, free


def _assert_consistent(blocks):
    for block in blocks:
        prv = block.prev_block()
        nxt = block.next_block()
        if prv is not None:
            assert prv.next_block() == block
        if nxt is not None:
            assert nxt.prev_block() == block
            assert is_allocated(nxt.prev) == block.allocated
        if block.next_ptr is not None:
            assert block.next_ptr.prev_ptr == block
        if block.prev_ptr is not None:
            assert block.prev_ptr.next_ptr == block


def _split_page(page):
    free = page.free_list
    step = page.memory.limits.small_block_size
    first = free.head
    block = first
    for i in range(NUM_BLOCKS):
        split_medium_block(block, align_size(i % step, step), free)
        block = block.next_block()
    return first


def _allocate_blocks(page):
    limits = page.memory.limits
    free, alloc = page.free_list, page.allocated_list
    for i in range(NUM_BLOCKS):
        size = align_size(limits.tiny_block_size + i % limits.small_block_size, ALIGNMENT)
        allocate_medium_block(size, free, alloc)


def _reallocate_blocks(page):
    limits = page.memory.limits
    free, alloc = page.free_list, page.allocated_list
    block = alloc.head
    for i in range(NUM_BLOCKS):
        following = block.next_ptr
        size = align_size(
            limits.tiny_block_size + (i * 2) % limits.small_block_size, ALIGNMENT
        )
        reallocate_medium_block(block, size, free, alloc)
        block = following


def test_next_and_prev_follow_memory_layout(memory):
    blocks, _, _ = _block_array(memory)
    for i, block in enumerate(blocks):
        expected_next = blocks[i + 1] if i + 1 < NUM_BLOCKS else None
        expected_prev = blocks[i - 1] if i > 0 else None
        assert block.next_block() == expected_next
        assert block.prev_block() == expected_prev


def test_list_add_sets_links_and_keeps_status(memory):
    _, alloc, free = _block_array(memory)
    for lst, allocated in ((alloc, True), (free, False)):
        prev = None
        count = 0
        for block in lst:
            assert block.prev_ptr == prev
            assert block.allocated is allocated
            prev = block
            count += 1
        assert count == NUM_BLOCKS // 2


def test_remove_from_middle_relinks_neighbours(memory):
    _, _, free = _block_array(memory)
    block = free.head.next_ptr.next_ptr
    nxt, prv = block.next_ptr, block.prev_ptr
    removed = free.remove(block)
    assert removed == block
    assert nxt.prev_ptr == prv
    assert prv.next_ptr == nxt
    assert block.next_ptr is None and block.prev_ptr is None
    assert block not in list(free)


def test_remove_head_updates_head(memory):
    _, alloc, _ = _block_array(memory)
    old = alloc.head
    second = old.next_ptr
    alloc.remove(old)
    assert alloc.head == second
    assert second.prev_ptr is None


def test_off_by_one_overflow_detected(memory):
    blocks, _, _ = _block_array(memory)
    block = blocks[0].next_block()
    assert not block.is_corrupted()
    saved = memory.read_bytes(block.data_end, 8)
    memory.write_bytes(block.data_end, b"\0")
    assert block.is_corrupted()
    memory.write_bytes(block.data_end, saved)
    assert not block.is_corrupted()


def test_complete_overflow_detected(memory):
    blocks, _, _ = _block_array(memory)
    block = blocks[0].next_block()
    memory.write_bytes(block.data, bytes(range(block.size * 2)))
    assert block.is_corrupted()


def test_find_by_data_pointer(memory):
    blocks, alloc, free = _block_array(memory)
    assert alloc.find(blocks[2].data) == blocks[2]
    assert alloc.find(blocks[2].address) is None
    assert free.find(blocks[2].data) is None
    assert alloc.find(None) is None


def test_from_data_round_trip(memory):
    blocks, _, _ = _block_array(memory)
    assert MediumBlock.from_data(memory, blocks[3].data) == blocks[3]
    assert blocks[3].data_end == blocks[3].data + HEADER_SIZE


def test_find_free_uses_best_fit(memory):
    base = memory.mmap(4096)
    lst = MediumBlockList(memory)
    sizes = {64: base, 48: base + 256, 128: base + 512}
    for size, address in sizes.items():
        block = MediumBlock(memory, address)
        block.curr = size
        lst.add(block)
    assert lst.find_free(64).address == sizes[64]
    assert lst.find_free(48).address == sizes[48]
    assert lst.find_free(40).address == sizes[48]
    assert lst.find_free(100).address == sizes[128]
    assert lst.find_free(200) is None


def test_list_in_memory_slot(memory):
    base = memory.mmap(4096)
    lst = MediumBlockList(memory, base)
    block = MediumBlock(memory, base + 64)
    lst.add(block)
    assert memory.read_word(base) == block.address
    assert lst.head == block


def test_split_medium_block(page):
    free = page.free_list
    step = page.memory.limits.small_block_size
    block = free.head
    free_count = len(list(free))
    for i in range(NUM_BLOCKS):
        old_curr = block.curr
        size = align_size(i % step, step)
        assert split_medium_block(block, size, free)
        new_count = len(list(free))
        assert block.size < old_curr & ~3
        assert block.allocated == is_allocated(old_curr)
        assert not (is_last_block(old_curr) and block.last)
        assert new_count > free_count
        nxt = block.next_block()
        assert nxt is not None
        assert nxt.prev_block() == block
        assert nxt.size != old_curr & ~3
        assert not nxt.allocated
        assert nxt.last == is_last_block(old_curr)
        block = nxt
        free_count = new_count


def test_split_refuses_small_block(page):
    free = page.free_list
    block = free.head
    assert not split_medium_block(block, block.size, free)
    assert len(list(free)) == 1


def test_merge_medium_block(page):
    first = _split_page(page)
    free = page.free_list
    block = first.next_block()
    nxt, prv = block.next_block(), block.prev_block()
    assert prv == first and not prv.allocated
    assert nxt is not None and not nxt.allocated

    old_size = block.size
    merged_block, merged = merge_medium_block(block, False, free)
    assert merged
    assert merged_block == block
    assert merged_block.next_block() is None
    assert merged_block.size > old_size
    assert not merged_block.allocated
    assert set(free) == {first, block}

    free.remove(block)
    old_size = block.size
    result, merged = merge_medium_block(block, True, free)
    assert merged
    assert result == first
    assert result.prev_block() is None
    assert result.size > old_size
    assert result.size == page.size - PAGE_HEADER_SIZE - HEADER_SIZE
    assert result.last
    assert list(free) == []


def test_allocate_medium_block(page):
    limits = page.memory.limits
    free, alloc = page.free_list, page.allocated_list
    for i in range(NUM_BLOCKS):
        size = align_size(limits.tiny_block_size + i % limits.small_block_size, ALIGNMENT)
        block = allocate_medium_block(size, free, alloc)
        assert block is not None
        assert block.size >= size
        assert block.allocated
        nxt = block.next_block()
        assert nxt is None or is_allocated(nxt.prev)
        assert block in list(alloc)
        assert block not in list(free)
    assert len(list(alloc)) == NUM_BLOCKS
    _assert_consistent(alloc)
    _assert_consistent(free)


def test_allocate_too_large_returns_none(page):
    free, alloc = page.free_list, page.allocated_list
    assert allocate_medium_block(page.size, free, alloc) is None
    assert list(alloc) == []


def test_reallocate_medium_block(page):
    _allocate_blocks(page)
    memory = page.memory
    limits = memory.limits
    free, alloc = page.free_list, page.allocated_list
    block = alloc.head
    for i in range(NUM_BLOCKS):
        assert block is not None
        following = block.next_ptr
        new_size = align_size(
            limits.tiny_block_size + (i * 2) % limits.small_block_size, ALIGNMENT
        )
        size = block.size
        pos = i % size
        char = bytes([ord("A") + i % 26])
        for offset in (0, pos, size - 1):
            memory.write_bytes(block.data + offset, char)
        result = reallocate_medium_block(block, new_size, free, alloc)
        assert result is not None
        assert result.size >= new_size
        for offset in (0, pos, size - 1):
            assert memory.read_bytes(result.data + offset, 1) == char
        block = following
    assert len(list(alloc)) == NUM_BLOCKS
    _assert_consistent(alloc)
    _assert_consistent(free)


def test_reallocate_shrink_keeps_block(page):
    free, alloc = page.free_list, page.allocated_list
    block = allocate_medium_block(1024, free, alloc)
    assert reallocate_medium_block(block, 512, free, alloc) == block
    assert block.size == 1024


def test_reallocate_grows_in_place_into_free_tail(page):
    free, alloc = page.free_list, page.allocated_list
    block = allocate_medium_block(1024, free, alloc)
    result = reallocate_medium_block(block, 4096, free, alloc)
    assert result == block
    assert result.size == 4096
    assert not result.last
    assert len(list(free)) == 1


def test_deallocate_medium_block(page):
    _allocate_blocks(page)
    _reallocate_blocks(page)
    free, alloc = page.free_list, page.allocated_list
    block = alloc.head
    for _ in range(NUM_BLOCKS):
        assert block is not None
        following = block.next_ptr
        result = deallocate_medium_block(block, free, alloc)
        assert not result.allocated
        nxt, prv = result.next_block(), result.prev_block()
        assert nxt is None or nxt.allocated
        assert prv is None or prv.allocated
        assert nxt is None or not is_allocated(nxt.prev)
        assert result not in list(alloc)
        assert result in list(free)
        block = following
    assert list(alloc) == []
    remaining = list(free)
    assert len(remaining) == 1
    assert remaining[0].size == page.size - PAGE_HEADER_SIZE - HEADER_SIZE