"""File-based doubly linked lists.

InnoDB threads extent descriptors, inode pages and undo pages onto lists
whose nodes live inside pages and link to each other by file address.

    base node (16 bytes):  length u32, first addr (6), last addr (6)
    list node (12 bytes):  prev addr (6), next addr (6)
"""

from __future__ import annotations

import struct
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import ClassVar

from innodb_reader.domain.errors import CorruptChainError
from innodb_reader.domain.value_objects.identifiers import FIL_ADDR_SIZE, FileAddress


@dataclass(frozen=True, slots=True)
class ListBaseNode:
    """Head of a file list."""

    length: int
    first: FileAddress
    last: FileAddress

    SIZE: ClassVar[int] = 16

    @property
    def is_empty(self) -> bool:
        return self.length == 0

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> ListBaseNode:
        (length,) = struct.unpack_from(">I", data, offset)
        first = FileAddress.from_bytes(data[offset + 4 : offset + 4 + FIL_ADDR_SIZE])
        last = FileAddress.from_bytes(data[offset + 10 : offset + 10 + FIL_ADDR_SIZE])
        return cls(length=length, first=first, last=last)


@dataclass(frozen=True, slots=True)
class ListNode:
    """Links of one list member."""

    prev: FileAddress
    next: FileAddress

    SIZE: ClassVar[int] = 12

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> ListNode:
        prev = FileAddress.from_bytes(data[offset : offset + FIL_ADDR_SIZE])
        next_ = FileAddress.from_bytes(data[offset + 6 : offset + 6 + FIL_ADDR_SIZE])
        return cls(prev=prev, next=next_)


def walk_list(
    base: ListBaseNode,
    read_node: Callable[[FileAddress], ListNode],
) -> Iterator[FileAddress]:
    """Yield the address of every node on a list, first to last.

    Args:
        base: The list's base node
        read_node: Loads the list node stored at an address

    Raises:
        CorruptChainError: If the list holds more nodes than its base node
            records (which also catches cycles)
    """
    address = base.first
    steps = 0
    while not address.is_null:
        steps += 1
        if steps > base.length:
            raise CorruptChainError(
                f"File list longer than its recorded length {base.length}",
                page_number=address.page_number,
                offset=address.offset,
            )
        yield address
        address = read_node(address).next
