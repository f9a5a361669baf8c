"""FIL page type tags.

Values of the FIL_PAGE_TYPE header field as written by MySQL 5.x and 8.0.
The enumeration is closed for decoding purposes: a tag outside it is kept
as a plain integer and the page decodes to the opaque variant.
"""

from __future__ import annotations

from enum import IntEnum


class PageType(IntEnum):
    """Page type tag stored at FIL header offset 24."""

    ALLOCATED = 0
    UNUSED = 1
    UNDO_LOG = 2
    INODE = 3
    IBUF_FREE_LIST = 4
    IBUF_BITMAP = 5
    SYS = 6
    TRX_SYS = 7
    FSP_HDR = 8
    XDES = 9
    BLOB = 10
    ZBLOB = 11
    ZBLOB2 = 12
    UNKNOWN = 13
    COMPRESSED = 14
    ENCRYPTED = 15
    COMPRESSED_AND_ENCRYPTED = 16
    ENCRYPTED_RTREE = 17
    SDI_BLOB = 18
    SDI_ZBLOB = 19
    LEGACY_DBLWR = 20
    RSEG_ARRAY = 21
    LOB_INDEX = 22
    LOB_DATA = 23
    LOB_FIRST = 24
    ZLOB_FIRST = 25
    ZLOB_DATA = 26
    ZLOB_INDEX = 27
    ZLOB_FRAG = 28
    ZLOB_FRAG_ENTRY = 29
    SDI = 17853
    RTREE = 17854
    INDEX = 17855

    @classmethod
    def lookup(cls, tag: int) -> PageType | int:
        """Return the enum member for a tag, or the raw tag when unknown."""
        try:
            return cls(tag)
        except ValueError:
            return tag


def page_type_name(tag: PageType | int) -> str:
    """Human-readable name for a page type tag (used as a metric label)."""
    if isinstance(tag, PageType):
        return tag.name
    return f"UNRECOGNIZED_{tag}"
