"""System tablespace bookkeeping pages.

SYS pages carry one of three bodies depending on where they sit:

    page 3          insert buffer header (FSEG header of the ibuf tree)
    page 7          data dictionary header (id counters, system table roots)
    anything else   rollback segment header (history list, undo slots)

The TRX_SYS page (page 5 of the system tablespace) holds the transaction id
high-water mark, the rollback segment directory, and the binary log and
doublewrite buffer descriptors near the end of the page.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from innodb_reader.domain.entities.flst import ListBaseNode
from innodb_reader.domain.entities.index_page import FsegHeader
from innodb_reader.domain.entities.page import FilHeader, Page
from innodb_reader.domain.value_objects.identifiers import (
    FIL_NULL,
    PageNumber,
    SpaceId,
    maybe_undefined,
)
from innodb_reader.domain.value_objects.page_type import PageType


IBUF_HEADER_PAGE_NO = 3
TRX_SYS_PAGE_NO = 5
FIRST_RSEG_PAGE_NO = 6
DICT_HEADER_PAGE_NO = 7

_BODY = FilHeader.SIZE


class SysPageKind(Enum):
    IBUF_HEADER = "ibuf_header"
    DICT_HEADER = "dict_header"
    RSEG_HEADER = "rseg_header"


@dataclass(frozen=True)
class DictHeader:
    """Data dictionary header.

    Attributes:
        max_row_id: Highest row id handed out for tables without a primary key
        max_table_id: Highest table id
        max_index_id: Highest index id
        max_space_id: Highest tablespace id
        mix_id_low: Obsolete mixed-index id counter
        sys_tables_root: Root of the SYS_TABLES clustered index
        sys_table_ids_root: Root of the SYS_TABLES secondary index on id
        sys_columns_root: Root of SYS_COLUMNS
        sys_indexes_root: Root of SYS_INDEXES
        sys_fields_root: Root of SYS_FIELDS
        fseg: Segment holding the dictionary header
    """

    max_row_id: int
    max_table_id: int
    max_index_id: int
    max_space_id: int
    mix_id_low: int
    sys_tables_root: PageNumber
    sys_table_ids_root: PageNumber
    sys_columns_root: PageNumber
    sys_indexes_root: PageNumber
    sys_fields_root: PageNumber
    fseg: FsegHeader

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = _BODY) -> DictHeader:
        row_id, table_id, index_id = struct.unpack_from(">QQQ", data, offset)
        max_space_id, mix_id_low, tables, table_ids, columns, indexes, fields = (
            struct.unpack_from(">7I", data, offset + 24)
        )
        return cls(
            max_row_id=row_id,
            max_table_id=table_id,
            max_index_id=index_id,
            max_space_id=max_space_id,
            mix_id_low=mix_id_low,
            sys_tables_root=PageNumber(tables),
            sys_table_ids_root=PageNumber(table_ids),
            sys_columns_root=PageNumber(columns),
            sys_indexes_root=PageNumber(indexes),
            sys_fields_root=PageNumber(fields),
            fseg=FsegHeader.from_bytes(data, offset + 56),
        )


@dataclass(frozen=True)
class RsegHeader:
    """Rollback segment header.

    Attributes:
        max_size: Maximum size of the segment in pages
        history_size: Pages on the history list
        history: Committed undo logs awaiting purge
        fseg: The segment's inode pointer
        undo_slots: Undo log header page per slot (None when free)
    """

    max_size: int
    history_size: int
    history: ListBaseNode
    fseg: FsegHeader
    undo_slots: tuple[PageNumber | None, ...]

    SLOTS_OFFSET: ClassVar[int] = 34

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = _BODY) -> RsegHeader:
        max_size, history_size = struct.unpack_from(">II", data, offset)
        n_slots = len(data) // 16
        slots = struct.unpack_from(f">{n_slots}I", data, offset + cls.SLOTS_OFFSET)
        return cls(
            max_size=max_size,
            history_size=history_size,
            history=ListBaseNode.from_bytes(data, offset + 8),
            fseg=FsegHeader.from_bytes(data, offset + 24),
            undo_slots=tuple(maybe_undefined(slot) for slot in slots),
        )

    def used_slots(self) -> list[tuple[int, PageNumber]]:
        """(slot index, undo page) for every occupied slot."""
        return [(i, page) for i, page in enumerate(self.undo_slots) if page is not None]


class SysPage(Page, page_types=(PageType.SYS,)):
    """SYS page; the body is chosen by page number."""

    @property
    def kind(self) -> SysPageKind:
        if self.page_number == IBUF_HEADER_PAGE_NO:
            return SysPageKind.IBUF_HEADER
        if self.page_number == DICT_HEADER_PAGE_NO:
            return SysPageKind.DICT_HEADER
        return SysPageKind.RSEG_HEADER

    @property
    def ibuf_header(self) -> FsegHeader | None:
        """Segment of the insert buffer tree (page 3 only)."""
        if self.kind is not SysPageKind.IBUF_HEADER:
            return None
        return FsegHeader.from_bytes(self.data, _BODY)

    @property
    def dict_header(self) -> DictHeader | None:
        if self.kind is not SysPageKind.DICT_HEADER:
            return None
        return DictHeader.from_bytes(self.data)

    @property
    def rseg_header(self) -> RsegHeader | None:
        if self.kind is not SysPageKind.RSEG_HEADER:
            return None
        return RsegHeader.from_bytes(self.data)


@dataclass(frozen=True, slots=True)
class RsegSlot:
    """Location of one rollback segment header."""

    index: int
    space_id: SpaceId
    page_number: PageNumber


@dataclass(frozen=True, slots=True)
class BinlogInfo:
    """Binary log position recorded at the last commit."""

    magic: int
    offset: int
    name: str

    MAGIC_N: ClassVar[int] = 873422344

    @property
    def valid(self) -> bool:
        return self.magic == self.MAGIC_N


@dataclass(frozen=True, slots=True)
class DoublewriteInfo:
    """Location of the doublewrite buffer."""

    fseg: FsegHeader
    magic: int
    block1: PageNumber
    block2: PageNumber
    repeat_magic: int
    repeat_block1: PageNumber
    repeat_block2: PageNumber
    space_id_stored: int

    MAGIC_N: ClassVar[int] = 536853855
    SPACE_ID_STORED_N: ClassVar[int] = 1783657386
    BLOCK_SIZE: ClassVar[int] = 64  # pages per block

    @property
    def valid(self) -> bool:
        return self.magic == self.MAGIC_N and self.repeat_magic == self.MAGIC_N


class TrxSysPage(Page, page_types=(PageType.TRX_SYS,)):
    """Transaction system header page."""

    TRX_ID_OFFSET: ClassVar[int] = _BODY
    FSEG_OFFSET: ClassVar[int] = _BODY + 8
    RSEGS_OFFSET: ClassVar[int] = _BODY + 18
    RSEG_SLOT_COUNT: ClassVar[int] = 128
    RSEG_SLOT_SIZE: ClassVar[int] = 8
    BINLOG_FROM_END: ClassVar[int] = 1000
    DOUBLEWRITE_FROM_END: ClassVar[int] = 200

    @property
    def trx_id_store(self) -> int:
        """Transaction id high-water mark (rounded up on restart)."""
        return struct.unpack_from(">Q", self.data, self.TRX_ID_OFFSET)[0]

    @property
    def fseg(self) -> FsegHeader:
        return FsegHeader.from_bytes(self.data, self.FSEG_OFFSET)

    def rseg_slots(self) -> list[RsegSlot]:
        """Rollback segments in use."""
        slots = []
        for index in range(self.RSEG_SLOT_COUNT):
            space_id, page_number = struct.unpack_from(
                ">II", self.data, self.RSEGS_OFFSET + index * self.RSEG_SLOT_SIZE
            )
            if page_number == FIL_NULL:
                continue
            slots.append(RsegSlot(index, SpaceId(space_id), PageNumber(page_number)))
        return slots

    @property
    def binlog_info(self) -> BinlogInfo:
        offset = self.size - self.BINLOG_FROM_END
        magic, high, low = struct.unpack_from(">III", self.data, offset)
        raw_name = self.data[offset + 12 : offset + 12 + 512]
        name = raw_name.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
        return BinlogInfo(magic=magic, offset=(high << 32) | low, name=name)

    @property
    def doublewrite(self) -> DoublewriteInfo:
        offset = self.size - self.DOUBLEWRITE_FROM_END
        magic, block1, block2, repeat_magic, repeat1, repeat2 = struct.unpack_from(
            ">6I", self.data, offset + FsegHeader.SIZE
        )
        (space_id_stored,) = struct.unpack_from(">I", self.data, offset + 34)
        return DoublewriteInfo(
            fseg=FsegHeader.from_bytes(self.data, offset),
            magic=magic,
            block1=PageNumber(block1),
            block2=PageNumber(block2),
            repeat_magic=repeat_magic,
            repeat_block1=PageNumber(repeat1),
            repeat_block2=PageNumber(repeat2),
            space_id_stored=space_id_stored,
        )
