"""Page checksum algorithms.

Three algorithms can have written a page, selected on the server by
innodb_checksum_algorithm:

    CRC32   CRC-32C of bytes [4, 26) xor CRC-32C of bytes [38, size - 8),
            stored in both the header and the trailer checksum fields.
    INNODB  Legacy folded sums: the "new" fold of the same two ranges in the
            header, and the "old" fold of bytes [0, 26) in the trailer.
    NONE    The magic value 0xDEADBEEF in both fields.

A page that is entirely zero (never written) is always valid. Validation
never raises; callers decide how to report a mismatch.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum


class ChecksumAlgorithm(Enum):
    """Checksum algorithm selector."""

    DETECT = "detect"
    CRC32 = "crc32"
    INNODB = "innodb"
    NONE = "none"


NO_CHECKSUM_MAGIC = 0xDEADBEEF

# Offsets of the two checksum-covered ranges
_HEADER_RANGE = (4, 26)  # page number .. end of LSN and type
_BODY_START = 38  # FIL header size
_TRAILER_SIZE = 8
_OLD_FOLD_END = 26  # FIL_PAGE_FILE_FLUSH_LSN

_DETECT_ORDER = (ChecksumAlgorithm.CRC32, ChecksumAlgorithm.INNODB, ChecksumAlgorithm.NONE)

_MASK32 = 0xFFFFFFFF
_HASH_RANDOM_MASK = 1463735687
_HASH_RANDOM_MASK2 = 1653893711


def _make_crc32c_table() -> list[int]:
    poly = 0x82F63B78
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ poly
            else:
                crc >>= 1
        table.append(crc)
    return table


_CRC32C_TABLE = _make_crc32c_table()


def crc32c(data: bytes, crc: int = 0) -> int:
    """CRC-32C (Castagnoli) of data, optionally continuing from crc."""
    crc ^= _MASK32
    table = _CRC32C_TABLE
    for byte in data:
        crc = table[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ _MASK32


def fold_pair(n1: int, n2: int) -> int:
    """Fold two integers into one (ut_fold_ulint_pair), truncated to 32 bits."""
    return (((((n1 ^ n2 ^ _HASH_RANDOM_MASK2) << 8) + n1) ^ _HASH_RANDOM_MASK) + n2) & _MASK32


def fold_bytes(data: bytes) -> int:
    """Fold a byte string one byte at a time, starting from zero."""
    fold = 0
    for byte in data:
        fold = fold_pair(fold, byte)
    return fold


def compute(page: bytes, algorithm: ChecksumAlgorithm) -> int:
    """Compute the header checksum field value for a page.

    Args:
        page: Full page bytes
        algorithm: A concrete algorithm (not DETECT)

    Returns:
        The 32-bit value expected at offset 0

    Raises:
        ValueError: If algorithm is DETECT
    """
    size = len(page)
    if algorithm is ChecksumAlgorithm.CRC32:
        return crc32c(page[_HEADER_RANGE[0] : _HEADER_RANGE[1]]) ^ crc32c(
            page[_BODY_START : size - _TRAILER_SIZE]
        )
    if algorithm is ChecksumAlgorithm.INNODB:
        return (
            fold_bytes(page[_HEADER_RANGE[0] : _HEADER_RANGE[1]])
            + fold_bytes(page[_BODY_START : size - _TRAILER_SIZE])
        ) & _MASK32
    if algorithm is ChecksumAlgorithm.NONE:
        return NO_CHECKSUM_MAGIC
    raise ValueError("DETECT is not a concrete checksum algorithm")


def compute_trailer(page: bytes, algorithm: ChecksumAlgorithm) -> int:
    """Compute the trailer checksum field value (offset size - 8)."""
    if algorithm is ChecksumAlgorithm.INNODB:
        return fold_bytes(page[:_OLD_FOLD_END])
    return compute(page, algorithm)


@dataclass(frozen=True, slots=True)
class ChecksumResult:
    """Outcome of validating one page.

    Attributes:
        valid: Whether the stored fields matched
        algorithm: The algorithm that matched (None when nothing matched)
        stored: Header checksum field as stored
        stored_trailer: Trailer checksum field as stored
    """

    valid: bool
    algorithm: ChecksumAlgorithm | None
    stored: int
    stored_trailer: int

    def __bool__(self) -> bool:
        return self.valid


def is_empty_page(page: bytes) -> bool:
    """True for a page that was never written."""
    return not any(page)


def validate(
    page: bytes,
    algorithm: ChecksumAlgorithm = ChecksumAlgorithm.DETECT,
) -> ChecksumResult:
    """Validate a page's stored checksums.

    With DETECT, each algorithm is tried in turn (CRC32, INNODB, NONE) and
    the first that matches is reported.
    """
    stored, = struct.unpack_from(">I", page, 0)
    stored_trailer, = struct.unpack_from(">I", page, len(page) - _TRAILER_SIZE)

    if is_empty_page(page):
        return ChecksumResult(True, None, stored, stored_trailer)

    candidates = _DETECT_ORDER if algorithm is ChecksumAlgorithm.DETECT else (algorithm,)
    for candidate in candidates:
        if stored != compute(page, candidate):
            continue
        if stored_trailer != compute_trailer(page, candidate):
            continue
        return ChecksumResult(True, candidate, stored, stored_trailer)

    return ChecksumResult(False, None, stored, stored_trailer)
