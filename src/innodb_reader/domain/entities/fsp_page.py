"""FSP_HDR and XDES pages.

Page 0 of every tablespace is an FSP_HDR page: the file space header
followed by the extent descriptor array for the first page_size pages.
Every page_size-th page after it is an XDES page with the same layout, the
space header area left unused.

    38    space header (112 bytes)
    150   XDES entries, one per extent described
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

from innodb_reader.domain.entities.flst import ListBaseNode
from innodb_reader.domain.entities.page import FilHeader, Page
from innodb_reader.domain.entities.xdes import XdesEntry, pages_per_extent, xdes_entry_size
from innodb_reader.domain.value_objects.identifiers import PageNumber, SpaceId
from innodb_reader.domain.value_objects.page_type import PageType


# FSP flag bit fields
FLAG_POST_ANTELOPE = 1 << 0
FLAG_ZIP_SSIZE_SHIFT = 1
FLAG_ZIP_SSIZE_MASK = 0xF << FLAG_ZIP_SSIZE_SHIFT
FLAG_ATOMIC_BLOBS = 1 << 5
FLAG_PAGE_SSIZE_SHIFT = 6
FLAG_PAGE_SSIZE_MASK = 0xF << FLAG_PAGE_SSIZE_SHIFT
FLAG_DATA_DIR = 1 << 10
FLAG_SHARED = 1 << 11
FLAG_TEMPORARY = 1 << 12
FLAG_ENCRYPTION = 1 << 13
FLAG_SDI = 1 << 14

UNCOMPRESSED_DEFAULT = 16384


def page_size_from_flags(flags: int) -> int:
    """Logical page size encoded in FSP flags (0 means the 16K default)."""
    ssize = (flags & FLAG_PAGE_SSIZE_MASK) >> FLAG_PAGE_SSIZE_SHIFT
    if ssize == 0:
        return UNCOMPRESSED_DEFAULT
    return 512 << ssize


def zip_size_from_flags(flags: int) -> int | None:
    """Compressed page size encoded in FSP flags, None when uncompressed."""
    ssize = (flags & FLAG_ZIP_SSIZE_MASK) >> FLAG_ZIP_SSIZE_SHIFT
    if ssize == 0:
        return None
    return 512 << ssize


def physical_page_size(flags: int) -> int:
    """Size of each page as stored in the file."""
    return zip_size_from_flags(flags) or page_size_from_flags(flags)


@dataclass(frozen=True)
class SpaceHeader:
    """File space header stored on page 0.

    Attributes:
        space_id: Tablespace id
        size: Current size of the space in pages
        free_limit: Pages at or above this number are not yet initialized
        flags: FSP flags (page size, row format capabilities, ...)
        frag_n_used: Pages in use on the FREE_FRAG list
        free: Extents with no used pages
        free_frag: Fragment extents with free pages
        full_frag: Fragment extents with no free pages
        next_seg_id: Next file segment id to allocate
        inodes_full: Inode pages with no free entries
        inodes_free: Inode pages with free entries
    """

    space_id: SpaceId
    size: int
    free_limit: int
    flags: int
    frag_n_used: int
    free: ListBaseNode
    free_frag: ListBaseNode
    full_frag: ListBaseNode
    next_seg_id: int
    inodes_full: ListBaseNode
    inodes_free: ListBaseNode

    OFFSET: ClassVar[int] = FilHeader.SIZE
    SIZE: ClassVar[int] = 112

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = FilHeader.SIZE) -> SpaceHeader:
        space_id, _, size, free_limit, flags, frag_n_used = struct.unpack_from(">6I", data, offset)
        (next_seg_id,) = struct.unpack_from(">Q", data, offset + 72)
        return cls(
            space_id=SpaceId(space_id),
            size=size,
            free_limit=free_limit,
            flags=flags,
            frag_n_used=frag_n_used,
            free=ListBaseNode.from_bytes(data, offset + 24),
            free_frag=ListBaseNode.from_bytes(data, offset + 40),
            full_frag=ListBaseNode.from_bytes(data, offset + 56),
            next_seg_id=next_seg_id,
            inodes_full=ListBaseNode.from_bytes(data, offset + 80),
            inodes_free=ListBaseNode.from_bytes(data, offset + 96),
        )

    @property
    def page_size(self) -> int:
        return page_size_from_flags(self.flags)

    @property
    def zip_size(self) -> int | None:
        return zip_size_from_flags(self.flags)

    @property
    def is_encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTION)

    @property
    def has_sdi(self) -> bool:
        return bool(self.flags & FLAG_SDI)


class FspHdrXdesPage(Page, page_types=(PageType.FSP_HDR, PageType.XDES)):
    """FSP_HDR (page 0) or XDES page."""

    XDES_OFFSET: ClassVar[int] = FilHeader.SIZE + SpaceHeader.SIZE

    @property
    def space_header(self) -> SpaceHeader | None:
        """The file space header; only meaningful on the FSP_HDR page."""
        if self.page_type != PageType.FSP_HDR:
            return None
        return SpaceHeader.from_bytes(self.data)

    @property
    def extent_pages(self) -> int:
        return pages_per_extent(self.size)

    @property
    def xdes_count(self) -> int:
        """Number of descriptor slots on this page."""
        return self.size // self.extent_pages

    def xdes_entry(self, index: int) -> XdesEntry:
        """Descriptor for the index-th extent described by this page."""
        if not 0 <= index < self.xdes_count:
            raise IndexError(f"XDES index {index} outside 0..{self.xdes_count - 1}")
        entry_size = xdes_entry_size(self.size)
        return XdesEntry.from_bytes(
            self.data,
            self.XDES_OFFSET + index * entry_size,
            start_page=self.page_number + index * self.extent_pages,
            extent_pages=self.extent_pages,
        )

    def xdes_entries(self, space_size: int | None = None) -> list[XdesEntry]:
        """Descriptors on this page, optionally only those inside the space."""
        entries = []
        for index in range(self.xdes_count):
            start = self.page_number + index * self.extent_pages
            if space_size is not None and start >= space_size:
                break
            entries.append(self.xdes_entry(index))
        return entries

    def xdes_for_offset(self, offset: int) -> XdesEntry:
        """Descriptor whose entry starts at a byte offset (list addresses
        point at the entry's list node, 8 bytes in)."""
        entry_size = xdes_entry_size(self.size)
        index, remainder = divmod(offset - self.XDES_OFFSET, entry_size)
        if remainder not in (0, XdesEntry.LIST_NODE_OFFSET) or index < 0:
            raise self.malformed("Address does not point at an extent descriptor", offset)
        return self.xdes_entry(index)

    def descriptor_page_for(self, page_number: int) -> PageNumber:
        """Page number of the descriptor page covering page_number."""
        return PageNumber(page_number - page_number % self.size)
