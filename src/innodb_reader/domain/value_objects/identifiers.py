"""Core identifiers and type-safe primitives for the tablespace reader.

These value objects provide type-safe identifiers that are used throughout
the reader to keep page numbers, space ids and log sequence numbers from
being mixed up as raw integers.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import NewType


PageNumber = NewType("PageNumber", int)
"""Position of a page within its tablespace (0-based)."""

SpaceId = NewType("SpaceId", int)
"""Tablespace identifier stored in every FIL header."""

LSN = NewType("LSN", int)
"""Log Sequence Number - byte position in the redo log stream."""

# Special sentinel values
FIL_NULL = 0xFFFFFFFF
"""Page number meaning "no page" in sibling links and file addresses."""

FIL_ADDR_SIZE = 6  # page number (4) + byte offset (2)


def maybe_undefined(page_number: int) -> PageNumber | None:
    """Map the FIL_NULL sentinel to None."""
    if page_number == FIL_NULL:
        return None
    return PageNumber(page_number)


@dataclass(frozen=True, slots=True)
class FileAddress:
    """A (page, offset) pair addressing a byte inside a tablespace.

    File addresses link list nodes across pages: extent descriptors on the
    FSP free lists, inode pages, undo pages and so on.

    Attributes:
        page_number: The page holding the target, or None for FIL_NULL
        offset: Byte offset of the target within that page

    Example:
        >>> FileAddress.from_bytes(b"\\x00\\x00\\x00\\x02\\x00\\x32")
        FileAddress(2:50)
    """

    page_number: PageNumber | None
    offset: int

    def __repr__(self) -> str:
        return f"FileAddress({self.page_number}:{self.offset})"

    @property
    def is_null(self) -> bool:
        """Return True when the address points nowhere."""
        return self.page_number is None

    @classmethod
    def from_bytes(cls, data: bytes) -> FileAddress:
        """Deserialize from the 6-byte on-disk form.

        Raises:
            ValueError: If data is shorter than 6 bytes
        """
        if len(data) < FIL_ADDR_SIZE:
            raise ValueError(f"FileAddress requires {FIL_ADDR_SIZE} bytes, got {len(data)}")

        page, offset = struct.unpack(">IH", data[:FIL_ADDR_SIZE])
        return cls(page_number=maybe_undefined(page), offset=offset)
