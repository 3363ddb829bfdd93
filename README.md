# ftheap

`ftheap` holds the parts of a memory allocator that works inside a simulated,
page-mapped address space. Memory is organised in three zones:

- **tiny** blocks live on small pages and are found first-fit (`ftheap.small`),
- **small** blocks live on medium pages with free and allocated lists and are
  found best-fit (`ftheap.medium`),
- **large** allocations each get a page of their own (`ftheap.large`).

Blocks carry boundary tags, and large pages a trailer word, so an overflow
into the next header can be detected.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `ftheap.memory` – `VirtualMemory`, a private address space handing out
  zeroed, page-aligned mappings addressed by plain integers (`mmap`, `munmap`,
  `read_word`, `write_word`, `read_bytes`, `write_bytes`, `bzero`, `memcpy`,
  `is_mapped`). Its `limits` property gives the zone sizes derived from the
  page size as a `Limits` record. Also `align_size`, `is_aligned`,
  `is_in_region` and the exceptions.
- `ftheap.block_base` – header words: `BlockFlag`, `get_block_size`,
  `is_allocated`, `is_last_block`, `with_flag`, `with_size`.
- `ftheap.small_block`, `ftheap.small_page`, `ftheap.small` – tiny blocks,
  their pages (`SmallPageList`) and `allocate_small`, `reallocate_small`,
  `deallocate_small`.
- `ftheap.medium_block`, `ftheap.medium_page`, `ftheap.medium` – small-class
  blocks with `MediumBlockList`, their pages (`MediumPageList`) and
  `allocate_medium`, `reallocate_medium`, `deallocate_medium`.
- `ftheap.large_page`, `ftheap.large` – large pages (`LargePageList`) and
  `allocate_large`, `reallocate_large`, `deallocate_large`.
- `ftheap.textout` – `sprintf` with the conversions `%% %b %c %s %d %i %u %x
  %X %p`, `format_uint`, `format_int`, `format_byte_hex`, `format_bytes`, and
  ANSI colours (`Color`, `colored`).

## Usage

```python
from ftheap.memory import ALIGNMENT, VirtualMemory, align_size
from ftheap.small_page import SmallPageList
from ftheap.small import allocate_small, deallocate_small
from ftheap.large_page import LargePageList
from ftheap.large import allocate_large, reallocate_large, deallocate_large

memory = VirtualMemory(page_size=4096, capacity=1 << 30)
print(memory.limits.tiny_block_size)   # 512 with 4096-byte pages

tiny_pages = SmallPageList(memory)
block = allocate_small(align_size(42, ALIGNMENT), False, tiny_pages)
memory.write_bytes(block.data, b"hello")
print(memory.read_bytes(block.data, 5))  # b'hello'
print(block.is_corrupted())              # False
deallocate_small(block, tiny_pages.find(block.data), tiny_pages)

large_pages = LargePageList(memory)
page = allocate_large(100_000, large_pages)
page = reallocate_large(page, 200_000, large_pages)
print(page.data_size >= 200_000)        # True
deallocate_large(page, large_pages)
```

Errors are raised as exceptions deriving from `ftheap.memory.HeapError`:

- `InvalidPointerError` for an access outside mapped memory or an unmap that
  does not match a mapping,
- `DoubleFreeError` when `deallocate_small` or `deallocate_medium` is given a
  block that is not in use,
- `OutOfMemoryError` when the address space's capacity is exhausted.

## What the package does not do

There is no single heap object that picks a zone from the request size, and
no `malloc`/`calloc`/`realloc`/`free` style front end: the caller chooses the
zone, aligns the size with `align_size` and keeps the page lists. There are
also no ready-made heap reports (allocation summary, hex dump of the heap, or
a scan of all pages for corruption); the per-block `is_corrupted` checks and
the `ftheap.textout` helpers are the pieces such reports would be built from.