import pytest

from ftheap.memory import InvalidPointerError, OutOfMemoryError, VirtualMemory
from ftheap.small_page import (
    PAGE_HEADER_SIZE,
    SmallPage,
    SmallPageList,
    create_small_page,
    destroy_small_page,
)

NUM_PAGES = 10


@pytest.fixture
def memory():
    return VirtualMemory(page_size=4096)


@pytest.fixture
def pages(memory):
    return SmallPageList(memory)


@pytest.fixture
def filled(memory, pages):
    for _ in range(1, NUM_PAGES):
        create_small_page(memory.limits.tiny_page_size, pages)
    return pages


def _bare_page(memory, size):
    page = SmallPage(memory, memory.mmap(4096))
    page.size = size
    return page


def test_page_list_add_and_remove(memory, pages):
    page1 = _bare_page(memory, 100)
    page2 = _bare_page(memory, 200)

    pages.add(page1)
    assert pages.head == page1

    pages.add(page2)
    head = pages.head
    assert head.next in (page1, page2)
    assert head.next.prev == head
    assert list(pages) == [page2, page1]

    removed = pages.remove(page1)
    assert removed == page1
    assert pages.head == page2
    assert pages.head.next is None
    assert pages.head.prev is None

    removed = pages.remove(page2)
    assert removed == page2
    assert pages.head is None
    assert list(pages) == []


def test_page_sizes_are_kept(memory):
    page = _bare_page(memory, 100)
    assert page.size == 100
    assert page.next is None and page.prev is None and page.block_list is None


def test_create_small_pages(memory, filled):
    created = list(filled)
    assert len(created) == NUM_PAGES - 1
    for page in created:
        assert page.size == memory.limits.tiny_page_size
        block = page.block_list
        assert block.address == page.address + PAGE_HEADER_SIZE
        assert block.size == memory.limits.tiny_page_size - PAGE_HEADER_SIZE - 16
        assert block.last
        assert not block.allocated
        assert block.prev_block() is None


def test_create_rounds_up_to_page_size(memory, pages):
    page = create_small_page(1000, pages)
    assert page.size == 4096
    assert page.block_list.size == 4096 - 48


def test_create_fails_without_memory():
    memory = VirtualMemory(page_size=4096, capacity=4096 * 16)
    pages = SmallPageList(memory)
    create_small_page(memory.limits.tiny_page_size, pages)
    with pytest.raises(OutOfMemoryError):
        create_small_page(memory.limits.tiny_page_size, pages)
    assert len(list(pages)) == 1


def test_find_in_small_page_list(memory, filled):
    all_pages = list(filled)
    first = all_pages[0]
    assert filled.find(first.block_list.address) == first

    middle = all_pages[NUM_PAGES // 2]
    assert filled.find(middle.block_list.address) == middle

    last = all_pages[-1]
    assert last.next is None
    assert filled.find(last.block_list.address) == last

    outside = memory.mmap(4096)
    assert filled.find(outside) is None
    assert filled.find(None) is None
    assert filled.find(0) is None


def test_find_respects_page_bounds(memory, pages):
    page = create_small_page(memory.limits.tiny_page_size, pages)
    assert pages.find(page.address) == page
    assert pages.find(page.address + page.size - 1) == page
    assert pages.find(page.address + page.size) is None


def test_destroy_small_pages(memory, filled):
    page = filled.head.next
    for _ in range(3, NUM_PAGES):
        nxt = page.next
        prev = page.prev
        address = page.address
        destroy_small_page(page, filled)
        assert not memory.is_mapped(address)
        if nxt is not None:
            assert nxt.prev != page
        if prev is not None:
            assert prev.next != page
        page = nxt
    assert filled.head.next.next is None
    assert len(list(filled)) == 2


def test_destroy_only_page_empties_list(memory, pages):
    page = create_small_page(memory.limits.tiny_page_size, pages)
    destroy_small_page(page, pages)
    assert pages.head is None
    assert list(pages) == []


def test_destroy_twice_raises(memory, pages):
    page = create_small_page(memory.limits.tiny_page_size, pages)
    destroy_small_page(page, pages)
    with pytest.raises(InvalidPointerError):
        destroy_small_page(page, pages)