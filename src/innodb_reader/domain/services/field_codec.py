"""Per-type field value decoding.

Integers are stored big-endian; signed integers with the sign bit inverted
(see unbias). Floating point values are stored little-endian IEEE 754.
"""

from __future__ import annotations

import struct
from typing import Any

from innodb_reader.domain.entities.cursor import bias, unbias
from innodb_reader.domain.entities.record import RollPointer
from innodb_reader.domain.value_objects.columns import ColumnDescriptor, TypeClass
from innodb_reader.domain.value_objects.identifiers import PageNumber


__all__ = ["bias", "unbias", "decode_value", "decode_int", "encode_int"]


def decode_int(data: bytes, signed: bool = True) -> int:
    """Decode a stored integer of len(data) bytes."""
    stored = int.from_bytes(data, "big")
    if signed:
        return unbias(stored, len(data))
    return stored


def encode_int(value: int, width: int, signed: bool = True) -> bytes:
    """Stored form of an integer; the inverse of decode_int.

    Raises:
        OverflowError: If value does not fit in width bytes
    """
    stored = bias(value, width) if signed else value
    return stored.to_bytes(width, "big")


def decode_value(column: ColumnDescriptor, data: bytes, encoding: str = "utf-8") -> Any:
    """Decode the inline bytes of a non-null, non-external field.

    Args:
        column: The field's descriptor
        data: Stored bytes
        encoding: Charset for textual columns without their own

    Returns:
        int, float, str, bytes, RollPointer or PageNumber depending on the
        column's type class

    Raises:
        ValueError: If a fixed-width field has the wrong number of bytes
    """
    type_class = column.type_class
    expected = column.fixed_length
    if expected is not None and len(data) != expected:
        raise ValueError(f"{column.name}: expected {expected} bytes, got {len(data)}")

    if type_class is TypeClass.INT:
        return decode_int(data, signed=True)
    if type_class in (TypeClass.UINT, TypeClass.TRX_ID):
        return decode_int(data, signed=False)
    if type_class is TypeClass.CHILD_PAGE:
        return PageNumber(decode_int(data, signed=False))
    if type_class is TypeClass.ROLL_PTR:
        return RollPointer.from_bytes(data)
    if type_class is TypeClass.FLOAT:
        return struct.unpack("<f", data)[0]
    if type_class is TypeClass.DOUBLE:
        return struct.unpack("<d", data)[0]
    if column.is_textual:
        text = data.decode(column.charset or encoding, errors="replace")
        if type_class is TypeClass.CHAR:
            # CHAR values are space padded to the column width
            return text.rstrip(" ")
        return text
    return bytes(data)
