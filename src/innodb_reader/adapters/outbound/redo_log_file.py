"""Redo log file reader.

An ib_logfile is a sequence of 512-byte blocks. The first four blocks form
the file header:

    block 0   header: format u32, log uuid u32, start LSN u64, creator (32)
    block 1   checkpoint 1
    block 2   unused (encryption info in newer servers)
    block 3   checkpoint 2

    checkpoint: number u64, LSN u64, byte offset u64, log buffer size u64

Log data blocks follow from byte 2048. Every header block carries the same
trailing checksum as a data block.

Thread Safety:
    Same model as FileSpace: the file is opened once and each seek+read
    pair runs under a lock.
"""

from __future__ import annotations

import struct
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from innodb_reader.domain.entities.log_block import LOG_BLOCK_SIZE, LogBlock
from innodb_reader.domain.errors import MalformedPageError
from innodb_reader.domain.value_objects import LSN
from innodb_reader.infrastructure.logging import get_logger


logger = get_logger(__name__)

LOG_FILE_HEADER_BLOCKS = 4
CHECKPOINT_BLOCKS = (1, 3)


@dataclass(frozen=True, slots=True)
class LogFileHeader:
    """Redo log file header (block 0)."""

    format: int
    log_uuid: int
    start_lsn: LSN
    creator: str

    FORMAT: ClassVar[str] = ">IIQ32s"

    @classmethod
    def from_bytes(cls, data: bytes) -> LogFileHeader:
        fmt, uuid, start_lsn, creator = struct.unpack_from(cls.FORMAT, data, 0)
        return cls(
            format=fmt,
            log_uuid=uuid,
            start_lsn=LSN(start_lsn),
            creator=creator.split(b"\x00", 1)[0].decode("ascii", errors="replace").strip(),
        )


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """One of the two alternating checkpoint records."""

    block: int
    number: int
    lsn: LSN
    offset: int
    log_buffer_size: int
    checksum_valid: bool

    FORMAT: ClassVar[str] = ">QQQQ"

    @classmethod
    def from_block(cls, block: int, data: bytes, checksum_valid: bool) -> Checkpoint:
        number, lsn, offset, buffer_size = struct.unpack_from(cls.FORMAT, data, 0)
        return cls(
            block=block,
            number=number,
            lsn=LSN(lsn),
            offset=offset,
            log_buffer_size=buffer_size,
            checksum_valid=checksum_valid,
        )


class RedoLogFile:
    """Read-only view of one redo log file.

    Example:
        >>> with RedoLogFile("ib_logfile0") as log:
        ...     log.latest_checkpoint().lsn
        ...     [r.type_name for r in log.block(0).records]
        19532044
        ['MLOG_2BYTES', 'MLOG_MULTI_REC_END']
    """

    def __init__(self, path: str | Path) -> None:
        """Open the log file.

        Raises:
            FileNotFoundError: If the file does not exist
            MalformedPageError: If the file is too short to hold its header
        """
        self._path = Path(path)
        self._lock = threading.Lock()
        self._closed = False
        self._file = open(self._path, "rb")

        size = self._path.stat().st_size
        if size < LOG_FILE_HEADER_BLOCKS * LOG_BLOCK_SIZE:
            self._file.close()
            self._closed = True
            raise MalformedPageError(
                f"Redo log file of {size} bytes has no room for its header"
            )
        self._block_count = size // LOG_BLOCK_SIZE - LOG_FILE_HEADER_BLOCKS
        self._header = LogFileHeader.from_bytes(self._read_block(0))

        logger.info(
            "redo_log_opened",
            path=str(self._path),
            blocks=self._block_count,
            start_lsn=self._header.start_lsn,
        )

    def _read_block(self, index: int) -> bytes:
        if self._closed:
            raise IOError("Redo log file is closed")
        with self._lock:
            self._file.seek(index * LOG_BLOCK_SIZE)
            data = self._file.read(LOG_BLOCK_SIZE)
        if len(data) != LOG_BLOCK_SIZE:
            raise MalformedPageError(
                f"Short read of log block {index}: got {len(data)} bytes"
            )
        return data

    @property
    def path(self) -> Path:
        return self._path

    @property
    def header(self) -> LogFileHeader:
        return self._header

    @property
    def block_count(self) -> int:
        """Number of log data blocks after the file header."""
        return self._block_count

    def checkpoints(self) -> list[Checkpoint]:
        checkpoints = []
        for index in CHECKPOINT_BLOCKS:
            data = self._read_block(index)
            checkpoints.append(
                Checkpoint.from_block(index, data, LogBlock.parse(data).checksum_valid())
            )
        return checkpoints

    def latest_checkpoint(self) -> Checkpoint | None:
        """The valid checkpoint with the highest number."""
        valid = [c for c in self.checkpoints() if c.checksum_valid]
        if not valid:
            return None
        return max(valid, key=lambda c: c.number)

    def block(self, index: int) -> LogBlock:
        """The index-th log data block (0 is the first after the header).

        Raises:
            IndexError: If index is outside the file
        """
        if not 0 <= index < self._block_count:
            raise IndexError(f"Log block {index} outside 0..{self._block_count - 1}")
        block = LogBlock.parse(self._read_block(LOG_FILE_HEADER_BLOCKS + index))
        if not block.checksum_valid():
            logger.warning(
                "log_block_checksum_mismatch",
                path=str(self._path),
                block=index,
                block_number=block.block_number,
            )
        return block

    def block_lsn(self, index: int) -> LSN:
        """LSN of the first byte of a data block."""
        return LSN(self._header.start_lsn + index * LOG_BLOCK_SIZE)

    def each_block(self) -> Iterator[LogBlock]:
        """Every data block in file order."""
        for index in range(self._block_count):
            yield self.block(index)

    def close(self) -> None:
        if self._closed:
            return
        with self._lock:
            self._closed = True
            self._file.close()
        logger.debug("redo_log_closed", path=str(self._path))

    def __enter__(self) -> RedoLogFile:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
