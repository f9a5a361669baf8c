"""Overflow pages holding externally stored field values.

Two generations of overflow storage exist:

BLOB pages (before 8.0) form a simple chain:

    38    part length u32
    42    next page u32 (FIL_NULL at the end)
    46    data

LOB pages (8.0) hang off a LOB_FIRST page that carries an index of
60-byte entries, each naming one data page and how much of it is used:

    LOB_FIRST   38 version, 39 flags, 40 LOB version, 54 data length,
                64 index list base, 80 free entry list base,
                96 ten index entries, 696 data
    LOB_DATA    38 version, 39 data length, 43 trx id, 49 data
    LOB_INDEX   38 version, 39..  index entries
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from innodb_reader.domain.entities.flst import ListBaseNode
from innodb_reader.domain.entities.page import FilHeader, Page
from innodb_reader.domain.entities.record import ExternReference
from innodb_reader.domain.errors import CorruptChainError, MalformedPageError
from innodb_reader.domain.value_objects.identifiers import (
    FIL_ADDR_SIZE,
    FileAddress,
    PageNumber,
    maybe_undefined,
)
from innodb_reader.domain.value_objects.page_type import PageType

if TYPE_CHECKING:
    from innodb_reader.ports.inbound.page_reader import PageReader


class BlobPage(Page, page_types=(PageType.BLOB,)):
    """Pre-8.0 uncompressed BLOB page."""

    PART_LENGTH_OFFSET: ClassVar[int] = FilHeader.SIZE
    NEXT_PAGE_OFFSET: ClassVar[int] = FilHeader.SIZE + 4
    DATA_OFFSET: ClassVar[int] = FilHeader.SIZE + 8

    def _check(self) -> None:
        if self.DATA_OFFSET + self.part_length > self.size - 8:
            raise self.malformed(
                f"BLOB part of {self.part_length} bytes does not fit the page",
                self.PART_LENGTH_OFFSET,
            )

    @property
    def part_length(self) -> int:
        return struct.unpack_from(">I", self.data, self.PART_LENGTH_OFFSET)[0]

    @property
    def next_page(self) -> PageNumber | None:
        return maybe_undefined(struct.unpack_from(">I", self.data, self.NEXT_PAGE_OFFSET)[0])

    def data_part(self) -> bytes:
        return self.data[self.DATA_OFFSET : self.DATA_OFFSET + self.part_length]


@dataclass(frozen=True, slots=True)
class LobIndexEntry:
    """One entry of a LOB index: a data page and its used length."""

    page_number: PageNumber
    offset: int
    prev: FileAddress
    next: FileAddress
    trx_id: int
    data_page: PageNumber | None
    data_length: int
    lob_version: int

    SIZE: ClassVar[int] = 60

    @classmethod
    def from_bytes(cls, data: bytes, offset: int, page_number: int) -> LobIndexEntry:
        prev = FileAddress.from_bytes(data[offset : offset + FIL_ADDR_SIZE])
        next_ = FileAddress.from_bytes(data[offset + 6 : offset + 12])
        trx_id = int.from_bytes(data[offset + 28 : offset + 34], "big")
        data_page, data_length, lob_version = struct.unpack_from(">IHI", data, offset + 48)
        return cls(
            page_number=PageNumber(page_number),
            offset=offset,
            prev=prev,
            next=next_,
            trx_id=trx_id,
            data_page=maybe_undefined(data_page) if data_page else None,
            data_length=data_length,
            lob_version=lob_version,
        )


class _LobIndexHolder(Page):
    """Pages that carry LOB index entries."""

    def index_entry_at(self, offset: int) -> LobIndexEntry:
        if not FilHeader.SIZE <= offset <= self.size - 8 - LobIndexEntry.SIZE:
            raise self.malformed("LOB index entry outside the page", offset)
        return LobIndexEntry.from_bytes(self.data, offset, self.page_number)


class LobFirstPage(_LobIndexHolder, page_types=(PageType.LOB_FIRST,)):
    """First page of an 8.0 LOB."""

    VERSION_OFFSET: ClassVar[int] = 38
    FLAGS_OFFSET: ClassVar[int] = 39
    LOB_VERSION_OFFSET: ClassVar[int] = 40
    DATA_LENGTH_OFFSET: ClassVar[int] = 54
    INDEX_LIST_OFFSET: ClassVar[int] = 64
    FREE_LIST_OFFSET: ClassVar[int] = 80
    INDEX_OFFSET: ClassVar[int] = 96
    INDEX_ENTRY_COUNT: ClassVar[int] = 10
    DATA_OFFSET: ClassVar[int] = 96 + 10 * 60

    @property
    def version(self) -> int:
        return self.data[self.VERSION_OFFSET]

    @property
    def flags(self) -> int:
        return self.data[self.FLAGS_OFFSET]

    @property
    def lob_version(self) -> int:
        return struct.unpack_from(">I", self.data, self.LOB_VERSION_OFFSET)[0]

    @property
    def data_length(self) -> int:
        return struct.unpack_from(">I", self.data, self.DATA_LENGTH_OFFSET)[0]

    @property
    def index_list(self) -> ListBaseNode:
        return ListBaseNode.from_bytes(self.data, self.INDEX_LIST_OFFSET)

    @property
    def free_list(self) -> ListBaseNode:
        return ListBaseNode.from_bytes(self.data, self.FREE_LIST_OFFSET)

    def data_part(self) -> bytes:
        return self.data[self.DATA_OFFSET : self.DATA_OFFSET + self.data_length]


class LobDataPage(Page, page_types=(PageType.LOB_DATA,)):
    """Data page of an 8.0 LOB."""

    VERSION_OFFSET: ClassVar[int] = 38
    DATA_LENGTH_OFFSET: ClassVar[int] = 39
    TRX_ID_OFFSET: ClassVar[int] = 43
    DATA_OFFSET: ClassVar[int] = 49

    @property
    def data_length(self) -> int:
        return struct.unpack_from(">I", self.data, self.DATA_LENGTH_OFFSET)[0]

    @property
    def trx_id(self) -> int:
        return int.from_bytes(self.data[self.TRX_ID_OFFSET : self.TRX_ID_OFFSET + 6], "big")

    def data_part(self) -> bytes:
        return self.data[self.DATA_OFFSET : self.DATA_OFFSET + self.data_length]


class LobIndexPage(_LobIndexHolder, page_types=(PageType.LOB_INDEX,)):
    """Overflow page for LOB index entries."""


def read_external(
    reader: PageReader,
    ref: ExternReference,
    max_length: int | None = None,
) -> bytes:
    """Follow an external field's overflow pages and return its bytes.

    Args:
        reader: Source of decoded pages
        ref: The pointer stored in the record
        max_length: Stop once this many bytes are collected

    Returns:
        The externally stored bytes (the inline prefix is not included)

    Raises:
        CorruptChainError: On a page chain cycle
        MalformedPageError: If the pointer leads to a page of the wrong type
    """
    wanted = ref.length if max_length is None else min(ref.length, max_length)
    first = reader.page(ref.page_number)

    if isinstance(first, LobFirstPage):
        return _read_lob(reader, first, wanted)
    if isinstance(first, BlobPage):
        return _read_blob_chain(reader, first, wanted)
    raise MalformedPageError(
        f"External field points at a {first.type_name} page",
        page_number=ref.page_number,
        offset=ref.offset,
    )


def _read_blob_chain(reader: PageReader, page: BlobPage, wanted: int) -> bytes:
    parts: list[bytes] = []
    collected = 0
    visited: set[int] = set()
    current: Page = page
    while True:
        if not isinstance(current, BlobPage):
            raise MalformedPageError(
                f"BLOB chain continues into a {current.type_name} page",
                page_number=current.page_number,
            )
        if current.page_number in visited:
            raise CorruptChainError("BLOB page chain loops", page_number=current.page_number)
        visited.add(current.page_number)

        part = current.data_part()
        parts.append(part)
        collected += len(part)
        if collected >= wanted or current.next_page is None:
            break
        current = reader.page(current.next_page)
    return b"".join(parts)[:wanted]


def _read_lob(reader: PageReader, first: LobFirstPage, wanted: int) -> bytes:
    parts: list[bytes] = []
    collected = 0
    index_list = first.index_list
    address = index_list.first
    steps = 0

    while not address.is_null and collected < wanted:
        steps += 1
        if steps > index_list.length:
            raise CorruptChainError(
                "LOB index longer than its recorded length",
                page_number=first.page_number,
            )
        if address.page_number == first.page_number:
            holder: Page = first
        else:
            holder = reader.page(address.page_number)
        if not isinstance(holder, _LobIndexHolder):
            raise MalformedPageError(
                f"LOB index entry on a {holder.type_name} page",
                page_number=address.page_number,
                offset=address.offset,
            )
        entry = holder.index_entry_at(address.offset)

        if entry.data_page is not None:
            if entry.data_page == first.page_number:
                part = first.data[first.DATA_OFFSET : first.DATA_OFFSET + entry.data_length]
            else:
                data_page = reader.page(entry.data_page)
                if not isinstance(data_page, LobDataPage):
                    raise MalformedPageError(
                        f"LOB data expected, found a {data_page.type_name} page",
                        page_number=entry.data_page,
                    )
                part = data_page.data_part()[: entry.data_length]
            parts.append(part)
            collected += len(part)
        address = entry.next

    return b"".join(parts)[:wanted]
