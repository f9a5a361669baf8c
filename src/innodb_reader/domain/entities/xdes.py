"""Extent descriptor (XDES) entries.

Each FSP_HDR or XDES page carries an array of extent descriptors, one per
extent the page describes:

    +-----------+-----------+-------+--------------------------------+
    | fseg id   | list node | state | bitmap (2 bits per page)       |
    | 8B        | 12B       | 4B    | pages_per_extent / 4 bytes     |
    +-----------+-----------+-------+--------------------------------+

Bit 0 of a page's pair is the "free" bit, bit 1 the "clean" bit; pairs are
packed least significant bit first.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar

from innodb_reader.domain.entities.flst import ListNode
from innodb_reader.domain.value_objects.identifiers import PageNumber


class ExtentState(IntEnum):
    """Which list an extent belongs to."""

    UNUSED = 0  # descriptor never initialized
    FREE = 1
    FREE_FRAG = 2
    FULL_FRAG = 3
    FSEG = 4
    FSEG_FRAG = 5


class PageState(Enum):
    """Allocation state of one page within an extent."""

    FREE = "free"
    FREE_FRAG = "free_frag"
    FULL_FRAG = "full_frag"
    FULLY_BOUND = "fully_bound"


@dataclass(frozen=True, slots=True)
class PageStatus:
    """Raw bitmap bits for one page."""

    free: bool
    clean: bool


BITS_PER_PAGE = 2
FREE_BIT = 0
CLEAN_BIT = 1


def pages_per_extent(page_size: int) -> int:
    """Extent size in pages: 1 MiB extents up to 16K pages, 64 pages above."""
    if page_size <= 16384:
        return (1 << 20) // page_size
    return 64


def xdes_entry_size(page_size: int) -> int:
    return XdesEntry.HEADER_SIZE + pages_per_extent(page_size) * BITS_PER_PAGE // 8


@dataclass(frozen=True)
class XdesEntry:
    """One extent descriptor.

    Attributes:
        offset: Byte offset of the entry within its page
        start_page: First page number of the described extent
        fseg_id: Owning file segment id (0 when not owned by a segment)
        list_node: Links to neighbouring descriptors on the extent's list
        extent_state: Extent state (ExtentState, or the raw int if out of range)
        bitmap: Packed 2-bit per-page status
    """

    offset: int
    start_page: PageNumber
    fseg_id: int
    list_node: ListNode
    extent_state: ExtentState | int
    bitmap: bytes

    HEADER_SIZE: ClassVar[int] = 24
    LIST_NODE_OFFSET: ClassVar[int] = 8

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        offset: int,
        start_page: int,
        extent_pages: int,
    ) -> XdesEntry:
        fseg_id, = struct.unpack_from(">Q", data, offset)
        list_node = ListNode.from_bytes(data, offset + cls.LIST_NODE_OFFSET)
        raw_state, = struct.unpack_from(">I", data, offset + 20)
        try:
            state: ExtentState | int = ExtentState(raw_state)
        except ValueError:
            state = raw_state

        bitmap_start = offset + cls.HEADER_SIZE
        bitmap = bytes(data[bitmap_start : bitmap_start + extent_pages * BITS_PER_PAGE // 8])
        return cls(
            offset=offset,
            start_page=PageNumber(start_page),
            fseg_id=fseg_id,
            list_node=list_node,
            extent_state=state,
            bitmap=bitmap,
        )

    @property
    def page_count(self) -> int:
        return len(self.bitmap) * 8 // BITS_PER_PAGE

    @property
    def end_page(self) -> PageNumber:
        """Last page number of the extent (inclusive)."""
        return PageNumber(self.start_page + self.page_count - 1)

    def _bit(self, page_offset: int, bit: int) -> bool:
        index = page_offset * BITS_PER_PAGE + bit
        return bool((self.bitmap[index // 8] >> (index % 8)) & 1)

    def page_status(self, page_offset: int) -> PageStatus:
        """Raw free/clean bits for the page at page_offset within the extent.

        Raises:
            IndexError: If page_offset is outside the extent
        """
        if not 0 <= page_offset < self.page_count:
            raise IndexError(f"Page offset {page_offset} outside extent of {self.page_count}")
        return PageStatus(
            free=self._bit(page_offset, FREE_BIT),
            clean=self._bit(page_offset, CLEAN_BIT),
        )

    def state(self, page_offset: int) -> PageState:
        """Allocation state of one page.

        A page whose free bit is set is FREE. A used page takes its state
        from the extent: pages of a segment-owned extent are FULLY_BOUND,
        pages of a fragment extent are FREE_FRAG or FULL_FRAG after the
        extent's list. A used page in an extent that claims to be free (or
        was never initialized) counts as FREE_FRAG.
        """
        if self.page_status(page_offset).free:
            return PageState.FREE
        if self.extent_state in (ExtentState.FSEG, ExtentState.FSEG_FRAG):
            return PageState.FULLY_BOUND
        if self.extent_state == ExtentState.FULL_FRAG:
            return PageState.FULL_FRAG
        return PageState.FREE_FRAG

    def state_counts(self) -> dict[PageState, int]:
        """Tally of page states; always sums to the extent size."""
        counts = dict.fromkeys(PageState, 0)
        for page_offset in range(self.page_count):
            counts[self.state(page_offset)] += 1
        return counts

    def free_pages(self) -> list[PageNumber]:
        return [
            PageNumber(self.start_page + i)
            for i in range(self.page_count)
            if self.page_status(i).free
        ]

    def used_pages(self) -> list[PageNumber]:
        return [
            PageNumber(self.start_page + i)
            for i in range(self.page_count)
            if not self.page_status(i).free
        ]

    @property
    def list_node_offset(self) -> int:
        """Offset of this entry's list node (what list addresses point at)."""
        return self.offset + self.LIST_NODE_OFFSET
