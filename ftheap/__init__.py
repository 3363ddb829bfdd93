"""Building blocks of a tiny/small/large zone allocator over simulated memory."""

__version__ = "0.1.0"
__all__ = [
    "block_base",
    "large",
    "large_page",
    "medium",
    "medium_block",
    "medium_page",
    "memory",
    "small",
    "small_block",
    "small_page",
    "textout",
]