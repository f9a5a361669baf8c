"""Key ordering used by in-page and B-tree search.

Keys are tuples compared column by column: integers and floats
numerically, text and binary values in byte order (code point order for
str, which matches UTF-8 byte order). A str compared with bytes is encoded
with the column's charset first. SQL NULL sorts below every value. When
one key is a prefix of the other, the shorter key is the smaller.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

DEFAULT_ENCODING = "utf-8"


def _normalize(value: Any) -> Any:
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


def compare_values(left: Any, right: Any, encoding: str = DEFAULT_ENCODING) -> int:
    """Three-way comparison of two column values.

    Args:
        encoding: Charset used when a str is compared with bytes

    Raises:
        TypeError: If the values are of incomparable types
    """
    if left is None or right is None:
        return (left is not None) - (right is not None)

    left, right = _normalize(left), _normalize(right)
    if isinstance(left, str) and isinstance(right, bytes):
        left = left.encode(encoding, errors="replace")
    elif isinstance(left, bytes) and isinstance(right, str):
        right = right.encode(encoding, errors="replace")

    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def compare_keys(
    left: Sequence[Any],
    right: Sequence[Any],
    encodings: Sequence[str] = (),
) -> int:
    """Three-way comparison of two keys with prefix ordering.

    Args:
        encodings: Charset of each key column; columns past its end use UTF-8

    Returns:
        Negative, zero or positive as left sorts before, equal to or after right
    """
    for index, (left_value, right_value) in enumerate(zip(left, right)):
        encoding = encodings[index] if index < len(encodings) else DEFAULT_ENCODING
        result = compare_values(left_value, right_value, encoding)
        if result:
            return result
    return (len(left) > len(right)) - (len(left) < len(right))
