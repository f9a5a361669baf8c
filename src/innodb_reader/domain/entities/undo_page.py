"""Undo log pages and undo records.

    38    undo page header (18 bytes): type, start, free, list node
    56    undo segment header (30 bytes, first page of a segment only):
          state, last log, FSEG header, page list base
          undo log headers and undo records follow

Undo records on a page form a singly linked list through a 2-byte absolute
"next" offset at the start of every record. The record body is:

    type/cmpl byte, undo number and table id (much-compressed), and for
    update and delete-mark records the info bits, transaction id and roll
    pointer (compressed), then the key and update vector.

The key and update vector need the table's shape to decode and are kept as
raw bytes.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from innodb_reader.domain.entities.flst import ListBaseNode, ListNode
from innodb_reader.domain.entities.index_page import FsegHeader
from innodb_reader.domain.entities.page import FilHeader, Page
from innodb_reader.domain.entities.record import RollPointer
from innodb_reader.domain.errors import CorruptChainError
from innodb_reader.domain.services.chain import ChainSequence
from innodb_reader.domain.value_objects.page_type import PageType


class UndoPageType(IntEnum):
    INSERT = 1
    UPDATE = 2


class UndoSegmentState(IntEnum):
    ACTIVE = 1
    CACHED = 2
    TO_FREE = 3
    TO_PURGE = 4
    PREPARED = 5


class UndoRecordType(IntEnum):
    INSERT = 11
    UPDATE_EXISTING = 12
    UPDATE_DELETED = 13
    DELETE_MARK = 14


UNDO_CMPL_SHIFT = 4
UNDO_CMPL_MASK = 0x3
UNDO_MODIFY_BLOB = 0x40
UNDO_UPDATE_EXTERN = 0x80


def _enum_or_int(enum_type: type[IntEnum], value: int) -> IntEnum | int:
    try:
        return enum_type(value)
    except ValueError:
        return value


@dataclass(frozen=True, slots=True)
class UndoPageHeader:
    """Per-page undo header.

    Attributes:
        page_type: Insert or update undo
        start: Offset of the first undo record of the newest log on the page
        free: Offset of the first free byte
        node: Links to the neighbouring pages of the undo segment
    """

    page_type: UndoPageType | int
    start: int
    free: int
    node: ListNode

    OFFSET: ClassVar[int] = FilHeader.SIZE
    SIZE: ClassVar[int] = 18

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = FilHeader.SIZE) -> UndoPageHeader:
        page_type, start, free = struct.unpack_from(">HHH", data, offset)
        return cls(
            page_type=_enum_or_int(UndoPageType, page_type),
            start=start,
            free=free,
            node=ListNode.from_bytes(data, offset + 6),
        )


@dataclass(frozen=True, slots=True)
class UndoSegmentHeader:
    """Undo segment header (first page of the segment)."""

    state: UndoSegmentState | int
    last_log: int
    fseg: FsegHeader
    page_list: ListBaseNode

    OFFSET: ClassVar[int] = FilHeader.SIZE + UndoPageHeader.SIZE
    SIZE: ClassVar[int] = 30

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = OFFSET) -> UndoSegmentHeader:
        state, last_log = struct.unpack_from(">HH", data, offset)
        return cls(
            state=_enum_or_int(UndoSegmentState, state),
            last_log=last_log,
            fseg=FsegHeader.from_bytes(data, offset + 4),
            page_list=ListBaseNode.from_bytes(data, offset + 14),
        )


@dataclass(frozen=True, slots=True)
class UndoLogHeader:
    """Header of one transaction's undo log.

    Attributes:
        offset: Byte offset of the header on its page
        trx_id: Transaction id
        trx_no: Transaction serialization number (set at commit)
        del_marks: Whether the log contains delete-mark records
        log_start: Offset of the first undo record of the log
        xid_exists: Whether XA XID data follows the header
        dict_trans: Whether the transaction was a DDL operation
        table_id: Table id for DDL transactions
        next_log: Offset of the next log header on the page, 0 if none
        prev_log: Offset of the previous log header on the page, 0 if none
        history_node: Links on the rollback segment history list
    """

    offset: int
    trx_id: int
    trx_no: int
    del_marks: bool
    log_start: int
    xid_exists: bool
    dict_trans: bool
    table_id: int
    next_log: int
    prev_log: int
    history_node: ListNode

    SIZE: ClassVar[int] = 46

    @classmethod
    def from_bytes(cls, data: bytes, offset: int) -> UndoLogHeader:
        trx_id, trx_no, del_marks, log_start, xid_exists, dict_trans, table_id, next_log, prev_log = (
            struct.unpack_from(">QQHHBBQHH", data, offset)
        )
        return cls(
            offset=offset,
            trx_id=trx_id,
            trx_no=trx_no,
            del_marks=bool(del_marks),
            log_start=log_start,
            xid_exists=bool(xid_exists),
            dict_trans=bool(dict_trans),
            table_id=table_id,
            next_log=next_log,
            prev_log=prev_log,
            history_node=ListNode.from_bytes(data, offset + 34),
        )


@dataclass(frozen=True)
class UndoRecord:
    """One decoded undo record.

    Attributes:
        page_number: Page holding the record
        offset: Offset of the record on the page
        next_offset: Offset of the following record on the page
        record_type: Insert, update or delete-mark
        cmpl_info: Compiler info flags of an update
        extern: Whether the update touched externally stored fields
        modify_blob: Whether the update modified a LOB in place
        undo_no: Undo number within the transaction
        table_id: Table the record belongs to
        info_bits: Record info bits before the change (update types only)
        trx_id: Transaction that last modified the row (update types only)
        roll_pointer: Previous version of the row (update types only)
        body: Unparsed key fields and update vector
    """

    page_number: int
    offset: int
    next_offset: int
    record_type: UndoRecordType | int
    cmpl_info: int
    extern: bool
    modify_blob: bool
    undo_no: int
    table_id: int
    info_bits: int | None = None
    trx_id: int | None = None
    roll_pointer: RollPointer | None = None
    body: bytes = b""

    @property
    def is_insert(self) -> bool:
        return self.record_type == UndoRecordType.INSERT

    @property
    def has_system_columns(self) -> bool:
        return self.record_type in (
            UndoRecordType.UPDATE_EXISTING,
            UndoRecordType.UPDATE_DELETED,
            UndoRecordType.DELETE_MARK,
        )


class UndoLogPage(Page, page_types=(PageType.UNDO_LOG,)):
    """UNDO_LOG page."""

    def _check(self) -> None:
        header = self.page_header
        if header.free > self.size - 8 or header.start > header.free:
            raise self.malformed(
                f"Undo page bounds start={header.start} free={header.free} out of range",
                UndoPageHeader.OFFSET,
            )

    @property
    def page_header(self) -> UndoPageHeader:
        return UndoPageHeader.from_bytes(self.data)

    @property
    def segment_header(self) -> UndoSegmentHeader:
        """Segment header; only meaningful on a segment's first page."""
        return UndoSegmentHeader.from_bytes(self.data)

    def log_header(self, offset: int | None = None) -> UndoLogHeader:
        """Undo log header at offset (default: the segment's last log)."""
        if offset is None:
            offset = self.segment_header.last_log
        if not FilHeader.SIZE <= offset <= self.size - 8 - UndoLogHeader.SIZE:
            raise self.malformed("Undo log header outside the page", offset)
        return UndoLogHeader.from_bytes(self.data, offset)

    def log_headers(self) -> list[UndoLogHeader]:
        """Every undo log header on a segment's first page, oldest first."""
        headers: list[UndoLogHeader] = []
        offset = self.segment_header.last_log
        seen: set[int] = set()
        while offset and offset not in seen:
            seen.add(offset)
            header = self.log_header(offset)
            headers.append(header)
            offset = header.prev_log
        headers.reverse()
        return headers

    def record_at(self, offset: int) -> UndoRecord:
        """Decode the undo record at offset."""
        cursor = self.cursor(offset)
        next_offset = cursor.uint16()
        type_cmpl = cursor.uint8()
        record_type = _enum_or_int(UndoRecordType, type_cmpl & 0xF)
        undo_no = cursor.much_compressed()
        table_id = cursor.much_compressed()

        info_bits = trx_id = roll_pointer = None
        if record_type in (
            UndoRecordType.UPDATE_EXISTING,
            UndoRecordType.UPDATE_DELETED,
            UndoRecordType.DELETE_MARK,
        ):
            info_bits = cursor.uint8()
            trx_id = cursor.u64_compressed()
            roll_pointer = RollPointer.from_int(cursor.u64_compressed())

        # The last two bytes of a record point back at its start
        body_end = next_offset - 2 if next_offset > cursor.position else cursor.position
        body = self.data[cursor.position : body_end]

        return UndoRecord(
            page_number=self.page_number,
            offset=offset,
            next_offset=next_offset,
            record_type=record_type,
            cmpl_info=(type_cmpl >> UNDO_CMPL_SHIFT) & UNDO_CMPL_MASK,
            extern=bool(type_cmpl & UNDO_UPDATE_EXTERN),
            modify_blob=bool(type_cmpl & UNDO_MODIFY_BLOB),
            undo_no=undo_no,
            table_id=table_id,
            info_bits=info_bits,
            trx_id=trx_id,
            roll_pointer=roll_pointer,
            body=bytes(body),
        )

    def record_bounds(self, log_header: UndoLogHeader | None = None) -> tuple[int, int]:
        """(first record, end) offsets of a log's records on this page."""
        page_header = self.page_header
        if log_header is None:
            return page_header.start, page_header.free
        end = log_header.next_log or page_header.free
        return log_header.log_start, end

    def _walk(self, start: int, end: int) -> Iterator[UndoRecord]:
        offset = start
        while offset and offset < end:
            record = self.record_at(offset)
            yield record
            if record.next_offset and record.next_offset <= offset:
                raise CorruptChainError(
                    f"Undo record chain moves backward to {record.next_offset}",
                    page_number=self.page_number,
                    offset=offset,
                )
            if record.next_offset > end:
                raise CorruptChainError(
                    f"Undo record chain runs past the log end {end}",
                    page_number=self.page_number,
                    offset=offset,
                )
            offset = record.next_offset

    def records(
        self,
        log_header: UndoLogHeader | None = None,
        strict: bool = True,
    ) -> ChainSequence[UndoRecord]:
        """Undo records on this page, oldest first.

        Without a log header the walk covers the page from its header's
        start offset up to the first free byte.
        """
        start, end = self.record_bounds(log_header)
        return ChainSequence(lambda: self._walk(start, end), strict=strict)
