"""Small general-purpose helpers."""

from __future__ import annotations

import math
import os
from collections.abc import Iterable

TIME_FORMAT = "%Y-%m-%d-T%H:%M:%S%z"
"""strftime format for full timestamps."""

DAY_FORMAT = "%Y-%m-%d"
"""strftime format for a day."""

_INT64_MASK = (1 << 64) - 1


def exists(path: str | os.PathLike) -> bool:
    """True if the path exists or cannot be ruled out as missing."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError:
        return True
    return True


def is_dir(path: str | os.PathLike) -> bool:
    """True if the path is an existing directory."""
    try:
        return os.path.isdir(path)
    except OSError:
        return False


def sort_by_string_length(strings: Iterable[str]) -> list[str]:
    """Strings ordered from shortest to longest."""
    return sorted(strings, key=len)


def abs64(a: int) -> int:
    """Two's complement 64-bit absolute value; the minimum maps to itself."""
    mask = a >> 63
    result = ((a ^ mask) - mask) & _INT64_MASK
    return result - (1 << 64) if result >= 1 << 63 else result


def round_half_up(f: float) -> int:
    """Round to the nearest integer, halves upward."""
    return int(math.floor(f + 0.5))


def string_in_slice(value: str, items: Iterable[str]) -> bool:
    """True if value is one of items."""
    return value in items