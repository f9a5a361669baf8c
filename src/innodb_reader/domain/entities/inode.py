"""File segment inode pages.

An INODE page holds a list node linking it to other inode pages, followed by
an array of 192-byte file segment inode entries:

    +---------+-----------------+------+----------+------+-------+----------------+
    | fseg id | not_full n_used | FREE | NOT_FULL | FULL | magic | frag slots     |
    | 8B      | 4B              | 16B  | 16B      | 16B  | 4B    | 32 x 4B        |
    +---------+-----------------+------+----------+------+-------+----------------+

A segment owns whole extents (on its three lists) plus up to 32 individually
allocated fragment pages.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, ClassVar

from innodb_reader.domain.entities.flst import ListBaseNode, ListNode, walk_list
from innodb_reader.domain.entities.fsp_page import FspHdrXdesPage
from innodb_reader.domain.entities.page import FilHeader, Page
from innodb_reader.domain.entities.xdes import XdesEntry
from innodb_reader.domain.services.chain import ChainSequence
from innodb_reader.domain.value_objects.identifiers import FIL_NULL, FileAddress, PageNumber
from innodb_reader.domain.value_objects.page_type import PageType

if TYPE_CHECKING:
    from innodb_reader.ports.inbound.page_reader import PageReader


FSEG_MAGIC_N = 97937874
FRAG_SLOT_COUNT = 32


class ExtentList(Enum):
    """The three extent lists of a segment."""

    FREE = "free"
    NOT_FULL = "not_full"
    FULL = "full"


@dataclass(frozen=True)
class Inode:
    """One file segment inode entry.

    Attributes:
        offset: Byte offset of the entry within its page
        page_number: Page the entry lives on
        fseg_id: Segment id (0 for an unused entry)
        not_full_n_used: Used pages in extents on the NOT_FULL list
        free: Extents owned by the segment with no used pages
        not_full: Extents with some used pages
        full: Extents with every page used
        magic: Should be FSEG_MAGIC_N
        fragments: The 32 fragment page slots (FIL_NULL when empty)
    """

    offset: int
    page_number: PageNumber
    fseg_id: int
    not_full_n_used: int
    free: ListBaseNode
    not_full: ListBaseNode
    full: ListBaseNode
    magic: int
    fragments: tuple[int, ...]

    SIZE: ClassVar[int] = 192

    @classmethod
    def from_bytes(cls, data: bytes, offset: int, page_number: int) -> Inode:
        fseg_id, not_full_n_used = struct.unpack_from(">QI", data, offset)
        (magic,) = struct.unpack_from(">I", data, offset + 60)
        fragments = struct.unpack_from(f">{FRAG_SLOT_COUNT}I", data, offset + 64)
        return cls(
            offset=offset,
            page_number=PageNumber(page_number),
            fseg_id=fseg_id,
            not_full_n_used=not_full_n_used,
            free=ListBaseNode.from_bytes(data, offset + 12),
            not_full=ListBaseNode.from_bytes(data, offset + 28),
            full=ListBaseNode.from_bytes(data, offset + 44),
            magic=magic,
            fragments=fragments,
        )

    @property
    def is_allocated(self) -> bool:
        return self.fseg_id != 0

    @property
    def magic_valid(self) -> bool:
        return self.magic == FSEG_MAGIC_N

    def fragment_pages(self) -> list[PageNumber]:
        """Page numbers held in used fragment slots, in slot order."""
        return [PageNumber(p) for p in self.fragments if p != FIL_NULL]

    def list_base(self, which: ExtentList) -> ListBaseNode:
        return {
            ExtentList.FREE: self.free,
            ExtentList.NOT_FULL: self.not_full,
            ExtentList.FULL: self.full,
        }[which]

    def extents(
        self,
        reader: PageReader,
        lists: tuple[ExtentList, ...] = (ExtentList.FREE, ExtentList.NOT_FULL, ExtentList.FULL),
        strict: bool = True,
    ) -> ChainSequence[XdesEntry]:
        """Extent descriptors on the segment's lists, read through reader.

        Walks each requested list in turn. No cross-check against the space
        header's free lists is made.
        """

        def load(address: FileAddress) -> tuple[FspHdrXdesPage, XdesEntry]:
            page = reader.page(address.page_number)
            if not isinstance(page, FspHdrXdesPage):
                raise page.malformed("Extent list points outside a descriptor page", address.offset)
            return page, page.xdes_for_offset(address.offset)

        def read_node(address: FileAddress) -> ListNode:
            return load(address)[1].list_node

        def walk() -> Iterator[XdesEntry]:
            for which in lists:
                for address in walk_list(self.list_base(which), read_node):
                    yield load(address)[1]

        return ChainSequence(walk, strict=strict)

    def page_count(self, reader: PageReader) -> int:
        """Fragment pages plus the pages of all owned extents."""
        return len(self.fragment_pages()) + sum(e.page_count for e in self.extents(reader))


class InodePage(Page, page_types=(PageType.INODE,)):
    """INODE page: a list node plus an array of segment inodes."""

    LIST_NODE_OFFSET: ClassVar[int] = FilHeader.SIZE
    ENTRIES_OFFSET: ClassVar[int] = FilHeader.SIZE + ListNode.SIZE

    @property
    def list_node(self) -> ListNode:
        """Links to neighbouring inode pages on the space's inode lists."""
        return ListNode.from_bytes(self.data, self.LIST_NODE_OFFSET)

    @property
    def next_inode_page(self) -> PageNumber | None:
        return self.list_node.next.page_number

    @property
    def capacity(self) -> int:
        """Number of inode slots on the page (85 for 16K pages)."""
        return (self.size - self.ENTRIES_OFFSET - 8) // Inode.SIZE

    def inode_at(self, index: int) -> Inode:
        if not 0 <= index < self.capacity:
            raise IndexError(f"Inode index {index} outside 0..{self.capacity - 1}")
        return Inode.from_bytes(
            self.data, self.ENTRIES_OFFSET + index * Inode.SIZE, self.page_number
        )

    def inodes(self, include_unused: bool = False) -> list[Inode]:
        """Inode entries on the page; allocated ones only by default."""
        entries = [self.inode_at(i) for i in range(self.capacity)]
        if include_unused:
            return entries
        return [inode for inode in entries if inode.is_allocated]

    def inode_for_offset(self, offset: int) -> Inode:
        """Entry starting at a byte offset (as in an FSEG header)."""
        index, remainder = divmod(offset - self.ENTRIES_OFFSET, Inode.SIZE)
        if remainder or index < 0:
            raise self.malformed("Offset does not point at an inode entry", offset)
        return self.inode_at(index)
