"""Bounds-checked cursor over an immutable byte buffer.

InnoDB stores most structures front to back, but record headers, null
bitmaps and variable-length tables are laid out backward from a record's
origin. ByteCursor reads in either direction; multi-byte integers are always
decoded big-endian from their natural byte order regardless of direction.
"""

from __future__ import annotations

import struct

from innodb_reader.domain.errors import MalformedPageError


def unbias(stored: int, width: int) -> int:
    """Recover a signed integer from its sign-flipped unsigned form.

    InnoDB stores signed integers with the sign bit inverted so that the
    unsigned byte order matches the signed numeric order.

    Args:
        stored: Unsigned value as read from disk
        width: Field width in bytes

    Returns:
        The signed value
    """
    return stored - (1 << (8 * width - 1))


def bias(value: int, width: int) -> int:
    """Inverse of unbias: the unsigned on-disk form of a signed value."""
    return value + (1 << (8 * width - 1))


class ByteCursor:
    """Forward/backward reader with bounds checking.

    Every read checks that the requested bytes lie inside the buffer and
    raises MalformedPageError (carrying the page number, when given)
    otherwise, so corrupt offsets never turn into silent garbage.

    Example:
        >>> c = ByteCursor(b"\\x00\\x01\\x02\\x03")
        >>> c.uint16()
        1
        >>> c.seek(4).backward().uint8()
        3
    """

    __slots__ = ("_data", "_position", "_backward", "_page_number")

    def __init__(
        self,
        data: bytes,
        offset: int = 0,
        page_number: int | None = None,
    ) -> None:
        self._data = data
        self._position = offset
        self._backward = False
        self._page_number = page_number

    @property
    def position(self) -> int:
        return self._position

    @property
    def data(self) -> bytes:
        return self._data

    def __len__(self) -> int:
        return len(self._data)

    def seek(self, offset: int) -> ByteCursor:
        """Move to an absolute offset."""
        if offset < 0 or offset > len(self._data):
            raise MalformedPageError(
                f"Seek outside buffer of {len(self._data)} bytes",
                page_number=self._page_number,
                offset=offset,
            )
        self._position = offset
        return self

    def forward(self) -> ByteCursor:
        self._backward = False
        return self

    def backward(self) -> ByteCursor:
        self._backward = True
        return self

    def skip(self, count: int) -> ByteCursor:
        """Advance past count bytes in the current direction."""
        self.read(count)
        return self

    def read(self, count: int) -> bytes:
        """Read count bytes in the current direction.

        Backward reads end at the current position and return the bytes in
        their stored order.
        """
        if count < 0:
            raise ValueError(f"Cannot read a negative byte count: {count}")

        if self._backward:
            start, end = self._position - count, self._position
        else:
            start, end = self._position, self._position + count

        if start < 0 or end > len(self._data):
            raise MalformedPageError(
                f"Read of {count} bytes outside buffer of {len(self._data)} bytes",
                page_number=self._page_number,
                offset=start,
            )

        self._position = start if self._backward else end
        return self._data[start:end]

    def peek(self, count: int) -> bytes:
        """Read without moving."""
        saved = self._position
        try:
            return self.read(count)
        finally:
            self._position = saved

    # Fixed-width integers

    def uint(self, width: int) -> int:
        """Big-endian unsigned integer of any width."""
        return int.from_bytes(self.read(width), "big")

    def uint8(self) -> int:
        return self.uint(1)

    def uint16(self) -> int:
        return self.uint(2)

    def uint32(self) -> int:
        return self.uint(4)

    def uint48(self) -> int:
        return self.uint(6)

    def uint64(self) -> int:
        return self.uint(8)

    def int16(self) -> int:
        """Big-endian two's complement 16-bit integer."""
        return struct.unpack(">h", self.read(2))[0]

    def biased(self, width: int) -> int:
        """Sign-flipped signed integer of width bytes."""
        return unbias(self.uint(width), width)

    def uint_le(self, width: int) -> int:
        """Little-endian unsigned integer."""
        return int.from_bytes(self.read(width), "little")

    # Compressed integers (forward only)

    def compressed(self) -> int:
        """Read a 1 to 5 byte compressed 32-bit integer.

        The leading bits of the first byte select the length:
        0xxxxxxx one byte, 10xxxxxx two, 110xxxxx three, 1110xxxx four,
        and 11110000 a marker followed by a full 32-bit value.
        """
        first = self.peek(1)[0]
        if first < 0x80:
            return self.uint8()
        if first < 0xC0:
            return self.uint16() & 0x3FFF
        if first < 0xE0:
            return self.uint(3) & 0x1FFFFF
        if first < 0xF0:
            return self.uint32() & 0x0FFFFFFF
        self.skip(1)
        return self.uint32()

    def u64_compressed(self) -> int:
        """Compressed high 32 bits followed by a full low 32 bits."""
        high = self.compressed()
        low = self.uint32()
        return (high << 32) | low

    def much_compressed(self) -> int:
        """Compressed integer with an optional 0xFF-prefixed high part."""
        if self.peek(1)[0] != 0xFF:
            return self.compressed()
        self.skip(1)
        high = self.compressed()
        low = self.compressed()
        return (high << 32) | low
