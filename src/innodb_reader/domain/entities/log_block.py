"""Redo log blocks and the log records they carry.

A redo log file is a sequence of 512-byte blocks:

    0     block number u32 (bit 31: flush flag)
    4     data length u16 (bytes used, header included)
    6     first record group u16 (offset of the first record starting here)
    8     checkpoint number u32
    12    log record bytes
    508   checksum u32

Each log record starts with a type byte (bit 7: single-record group), then
the space id and page number as compressed integers, then a type-specific
body. Only bodies whose length can be derived without replaying are decoded;
the walk stops at the first other record.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar

from innodb_reader.domain.entities.cursor import ByteCursor
from innodb_reader.domain.errors import MalformedPageError
from innodb_reader.domain.services.checksum import ChecksumAlgorithm, crc32c


LOG_BLOCK_SIZE = 512
LOG_BLOCK_HEADER_SIZE = 12
LOG_BLOCK_TRAILER_SIZE = 4
LOG_BLOCK_FLUSH_BIT = 0x80000000
MLOG_SINGLE_REC_FLAG = 0x80


class LogRecordType(IntEnum):
    """Redo log record types with a self-describing length."""

    MLOG_1BYTE = 1
    MLOG_2BYTES = 2
    MLOG_4BYTES = 4
    MLOG_8BYTES = 8
    MLOG_WRITE_STRING = 30
    MLOG_MULTI_REC_END = 31
    MLOG_DUMMY_RECORD = 32


_NO_PAGE_TYPES = (LogRecordType.MLOG_MULTI_REC_END, LogRecordType.MLOG_DUMMY_RECORD)


def log_block_fold(data: bytes) -> int:
    """Legacy InnoDB checksum of a log block body."""
    total = 1
    shift = 0
    for byte in data:
        total &= 0x7FFFFFFF
        total += byte + (byte << shift)
        shift += 1
        if shift > 24:
            shift = 0
    return total & 0xFFFFFFFF


@dataclass(frozen=True)
class LogRecord:
    """One redo log record.

    Attributes:
        offset: Offset of the record inside the block
        type: Record type tag (LogRecordType when known)
        single_record: Whether the record forms a group by itself
        space_id: Tablespace id, None for records without a page
        page_number: Page number, None for records without a page
        page_offset: Offset on the page written, for write records
        value: Written integer or string, for write records
        payload: Undecoded bytes after the header when the body is opaque
    """

    offset: int
    type: LogRecordType | int
    single_record: bool
    space_id: int | None = None
    page_number: int | None = None
    page_offset: int | None = None
    value: int | bytes | None = None
    payload: bytes | None = None

    @property
    def is_opaque(self) -> bool:
        return self.payload is not None

    @property
    def type_name(self) -> str:
        if isinstance(self.type, LogRecordType):
            return self.type.name
        return f"MLOG_{int(self.type)}"


@dataclass(frozen=True)
class LogBlock:
    """One 512-byte redo log block."""

    data: bytes
    block_number: int
    flush: bool
    data_length: int
    first_rec_group: int
    checkpoint_number: int
    checksum: int
    records: tuple[LogRecord, ...] = field(default=())

    SIZE: ClassVar[int] = LOG_BLOCK_SIZE
    HEADER_FORMAT: ClassVar[str] = ">IHHI"

    @classmethod
    def parse(cls, data: bytes) -> LogBlock:
        """Decode a block and the log records that start in it.

        Raises:
            MalformedPageError: If data is not exactly one block long
        """
        if len(data) != LOG_BLOCK_SIZE:
            raise MalformedPageError(
                f"Log block is {len(data)} bytes, expected {LOG_BLOCK_SIZE}"
            )
        number_word, data_length, first_rec_group, checkpoint = struct.unpack_from(
            cls.HEADER_FORMAT, data, 0
        )
        (checksum,) = struct.unpack_from(">I", data, LOG_BLOCK_SIZE - LOG_BLOCK_TRAILER_SIZE)
        block_number = number_word & ~LOG_BLOCK_FLUSH_BIT
        return cls(
            data=bytes(data),
            block_number=block_number,
            flush=bool(number_word & LOG_BLOCK_FLUSH_BIT),
            data_length=data_length,
            first_rec_group=first_rec_group,
            checkpoint_number=checkpoint,
            checksum=checksum,
            records=tuple(_parse_records(data, first_rec_group, data_length, block_number)),
        )

    @property
    def is_empty(self) -> bool:
        return self.data_length <= LOG_BLOCK_HEADER_SIZE

    @property
    def body(self) -> bytes:
        end = min(self.data_length, LOG_BLOCK_SIZE - LOG_BLOCK_TRAILER_SIZE)
        return self.data[LOG_BLOCK_HEADER_SIZE:end]

    def compute_checksum(self, algorithm: ChecksumAlgorithm) -> int:
        covered = self.data[: LOG_BLOCK_SIZE - LOG_BLOCK_TRAILER_SIZE]
        if algorithm is ChecksumAlgorithm.CRC32:
            return crc32c(covered)
        if algorithm is ChecksumAlgorithm.INNODB:
            return log_block_fold(covered)
        raise ValueError(f"No log block checksum for {algorithm.value}")

    def checksum_algorithm(self) -> ChecksumAlgorithm | None:
        """The algorithm the stored checksum matches, or None."""
        for algorithm in (ChecksumAlgorithm.CRC32, ChecksumAlgorithm.INNODB):
            if self.compute_checksum(algorithm) == self.checksum:
                return algorithm
        return None

    def checksum_valid(self, algorithm: ChecksumAlgorithm = ChecksumAlgorithm.DETECT) -> bool:
        if algorithm is ChecksumAlgorithm.NONE:
            return True
        if algorithm is ChecksumAlgorithm.DETECT:
            return self.checksum_algorithm() is not None
        return self.compute_checksum(algorithm) == self.checksum


def _parse_records(
    data: bytes, start: int, data_length: int, block_number: int
) -> list[LogRecord]:
    end = min(data_length, LOG_BLOCK_SIZE - LOG_BLOCK_TRAILER_SIZE)
    if start < LOG_BLOCK_HEADER_SIZE or start >= end:
        return []

    # A block number stands in for the page so cursor errors name the block
    cursor = ByteCursor(data[:end], start, page_number=block_number)
    records: list[LogRecord] = []
    while cursor.position < end:
        record = _parse_record(cursor, end)
        records.append(record)
        if record.is_opaque:
            break
    return records


def _parse_record(cursor: ByteCursor, end: int) -> LogRecord:
    offset = cursor.position
    type_byte = cursor.uint8()
    single = bool(type_byte & MLOG_SINGLE_REC_FLAG)
    tag = type_byte & ~MLOG_SINGLE_REC_FLAG
    try:
        record_type: LogRecordType | int = LogRecordType(tag)
    except ValueError:
        record_type = tag

    if record_type in _NO_PAGE_TYPES:
        return LogRecord(offset=offset, type=record_type, single_record=single)

    try:
        space_id = cursor.compressed()
        page_number = cursor.compressed()
    except MalformedPageError:
        return LogRecord(
            offset=offset,
            type=record_type,
            single_record=single,
            payload=bytes(cursor.data[offset + 1 : end]),
        )

    body_start = cursor.position
    try:
        if record_type in (
            LogRecordType.MLOG_1BYTE,
            LogRecordType.MLOG_2BYTES,
            LogRecordType.MLOG_4BYTES,
        ):
            page_offset = cursor.uint16()
            value: int | bytes = cursor.compressed()
        elif record_type is LogRecordType.MLOG_8BYTES:
            page_offset = cursor.uint16()
            value = cursor.u64_compressed()
        elif record_type is LogRecordType.MLOG_WRITE_STRING:
            page_offset = cursor.uint16()
            length = cursor.uint16()
            value = cursor.read(length)
        else:
            return LogRecord(
                offset=offset,
                type=record_type,
                single_record=single,
                space_id=space_id,
                page_number=page_number,
                payload=bytes(cursor.data[body_start:end]),
            )
    except MalformedPageError:
        # Body continues in the next block
        return LogRecord(
            offset=offset,
            type=record_type,
            single_record=single,
            space_id=space_id,
            page_number=page_number,
            payload=bytes(cursor.data[body_start:end]),
        )

    return LogRecord(
        offset=offset,
        type=record_type,
        single_record=single,
        space_id=space_id,
        page_number=page_number,
        page_offset=page_offset,
        value=value,
    )
