"""Text formatting helpers: numbers, hex bytes, a small printf and colours."""

from __future__ import annotations

import enum
from typing import Any, Callable

_SIZE_MASK = (1 << 64) - 1
_CHARSETS = {
    8: "01234567",
    10: "0123456789",
    16: "0123456789ABCDEF",
}


class Color(enum.Enum):
    """ANSI terminal colour sequences."""

    RESET = "\033[0m"

    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[0;33m"
    BLUE = "\033[0;34m"
    PURPLE = "\033[0;35m"
    CYAN = "\033[0;36m"

    BOLD_RED = "\033[1;31m"
    BOLD_GREEN = "\033[1;32m"
    BOLD_YELLOW = "\033[1;33m"
    BOLD_BLUE = "\033[1;34m"
    BOLD_PURPLE = "\033[1;35m"
    BOLD_CYAN = "\033[1;36m"

    UNDERLINED_RED = "\033[4;31m"
    UNDERLINED_GREEN = "\033[4;32m"
    UNDERLINED_YELLOW = "\033[4;33m"
    UNDERLINED_BLUE = "\033[4;34m"
    UNDERLINED_PURPLE = "\033[4;35m"
    UNDERLINED_CYAN = "\033[4;36m"

    INTENSE_RED = "\033[0;91m"
    INTENSE_GREEN = "\033[0;92m"
    INTENSE_YELLOW = "\033[0;93m"
    INTENSE_BLUE = "\033[0;94m"
    INTENSE_PURPLE = "\033[0;95m"
    INTENSE_CYAN = "\033[0;96m"

    BOLD_INTENSE_RED = "\033[1;91m"
    BOLD_INTENSE_GREEN = "\033[1;92m"
    BOLD_INTENSE_YELLOW = "\033[1;93m"
    BOLD_INTENSE_BLUE = "\033[1;94m"
    BOLD_INTENSE_PURPLE = "\033[1;95m"
    BOLD_INTENSE_CYAN = "\033[1;96m"


def format_uint(number: int, base: int) -> str:
    """Render ``number`` as an unsigned word in base 8, 10 or 16 (upper case)."""
    charset = _CHARSETS.get(base)
    if charset is None:
        raise ValueError(f"unsupported base {base}")
    number &= _SIZE_MASK
    digits = []
    while True:
        number, digit = divmod(number, base)
        digits.append(charset[digit])
        if number == 0:
            break
    return "".join(reversed(digits))


def format_int(number: int, base: int) -> str:
    """Render a signed ``number``, prefixed with ``-`` when negative."""
    if number < 0:
        return "-" + format_uint(-number, base)
    return format_uint(number, base)


def format_byte_hex(byte: int) -> str:
    """Render one byte as two upper-case hex digits."""
    return format_uint(byte & 0xFF, 16).rjust(2, "0")


def format_bytes(data: bytes) -> str:
    """Render bytes as space-separated hex pairs."""
    return " ".join(format_byte_hex(byte) for byte in data)


def _format_char(value: Any) -> str:
    if isinstance(value, str):
        if len(value) != 1:
            raise ValueError("%c expects a single character")
        return value
    return chr(value & 0xFF)


def _format_string(value: Any) -> str:
    return "(null)" if value is None else str(value)


def _format_pointer(value: int | None) -> str:
    return "0x" + format_uint(value or 0, 16)


_CONVERTERS: dict[str, Callable[[Any], str]] = {
    "b": format_byte_hex,
    "c": _format_char,
    "s": _format_string,
    "d": lambda value: format_int(value, 10),
    "i": lambda value: format_int(value, 10),
    "u": lambda value: format_uint(value, 10),
    "x": lambda value: format_uint(value, 16),
    "X": lambda value: format_uint(value, 16),
    "p": _format_pointer,
}


def sprintf(fmt: str, *args: Any) -> str:
    """Format ``args`` with the conversions %% %b %c %s %d %i %u %x %X %p."""
    out = []
    values = iter(args)
    chars = iter(fmt)
    for char in chars:
        if char != "%":
            out.append(char)
            continue
        spec = next(chars, None)
        if spec is None:
            raise ValueError("format string ends with a lone '%'")
        if spec == "%":
            out.append("%")
            continue
        converter = _CONVERTERS.get(spec)
        if converter is None:
            raise ValueError(f"unknown conversion %{spec}")
        try:
            value = next(values)
        except StopIteration:
            raise ValueError(f"missing argument for %{spec}") from None
        out.append(converter(value))
    return "".join(out)


def colored(color: Color | str, text: str) -> str:
    """Wrap ``text`` in ``color`` followed by the reset sequence."""
    code = color.value if isinstance(color, Color) else color
    return f"{code}{text}{Color.RESET.value}"