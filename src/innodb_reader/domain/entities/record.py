"""Index record entities.

A record is addressed by its origin: the byte offset where its first field
starts. Everything describing the record's layout is stored backward from
the origin.

Compact format:

    ... | var lengths (backward) | null bitmap (backward) | header (5B) | fields ...
                                                                      ^ origin

    header: info bits (4) + n_owned (4) | heap_no (13) + status (3) | next (16, signed,
            relative to the origin)

Redundant format:

    ... | field end offsets (backward) | header (6B) | fields ...
                                                    ^ origin

    header: info bits (4) + n_owned (4) | heap_no (13) + n_fields (10) + 1-byte flag (1)
            | next (16, absolute)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, ClassVar

from innodb_reader.domain.value_objects.columns import ColumnDescriptor, FieldRole
from innodb_reader.domain.value_objects.identifiers import PageNumber, SpaceId


class RowFormat(Enum):
    """Physical record format of an index page."""

    REDUNDANT = "redundant"
    COMPACT = "compact"


class RecordKind(IntEnum):
    """Record status stored in the header."""

    CONVENTIONAL = 0
    NODE_POINTER = 1
    INFIMUM = 2
    SUPREMUM = 3


# Info bits
INFO_MIN_REC = 0x1
INFO_DELETED = 0x2


@dataclass(frozen=True, slots=True)
class RecordHeader:
    """Decoded record header.

    Attributes:
        row_format: Format the header was decoded in
        info_bits: Raw 4-bit info flags
        n_owned: Records owned by this one in the page directory (0 unless
            the record ends a directory group)
        heap_no: Insertion-order number (0 infimum, 1 supremum)
        kind: Conventional, node pointer, infimum or supremum
        next_offset: Absolute origin of the next record, None at the end
        n_fields: Stored field count (redundant format only)
        short_offsets: One-byte end offsets (redundant format only)
    """

    row_format: RowFormat
    info_bits: int
    n_owned: int
    heap_no: int
    kind: RecordKind
    next_offset: int | None
    n_fields: int | None = None
    short_offsets: bool | None = None

    COMPACT_SIZE: ClassVar[int] = 5
    REDUNDANT_SIZE: ClassVar[int] = 6

    @property
    def size(self) -> int:
        if self.row_format is RowFormat.COMPACT:
            return self.COMPACT_SIZE
        return self.REDUNDANT_SIZE

    @property
    def deleted(self) -> bool:
        return bool(self.info_bits & INFO_DELETED)

    @property
    def min_rec(self) -> bool:
        return bool(self.info_bits & INFO_MIN_REC)


@dataclass(frozen=True, slots=True)
class RollPointer:
    """Decoded 7-byte DB_ROLL_PTR.

    Attributes:
        is_insert: Whether the undo record is an insert undo record
        rseg_id: Rollback segment id
        undo_page: Page holding the undo record
        undo_offset: Offset of the undo record on that page
    """

    is_insert: bool
    rseg_id: int
    undo_page: PageNumber
    undo_offset: int

    SIZE: ClassVar[int] = 7

    @classmethod
    def from_int(cls, value: int) -> RollPointer:
        return cls(
            is_insert=bool((value >> 55) & 1),
            rseg_id=(value >> 48) & 0x7F,
            undo_page=PageNumber((value >> 16) & 0xFFFFFFFF),
            undo_offset=value & 0xFFFF,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> RollPointer:
        if len(data) != cls.SIZE:
            raise ValueError(f"RollPointer requires {cls.SIZE} bytes, got {len(data)}")
        return cls.from_int(int.from_bytes(data, "big"))

    def to_int(self) -> int:
        return (
            (int(self.is_insert) << 55)
            | (self.rseg_id << 48)
            | (self.undo_page << 16)
            | self.undo_offset
        )


EXTERN_OWNER_FLAG = 0x80
EXTERN_INHERITED_FLAG = 0x40


@dataclass(frozen=True, slots=True)
class ExternReference:
    """Pointer from a record to an externally stored field value.

    The last 20 inline bytes of an external field:
    space id (4), page number (4), offset (4), length (8). The top byte of
    the length carries the owner and inherit flags; only its low 32 bits
    hold the external length.
    """

    space_id: SpaceId
    page_number: PageNumber
    offset: int
    length: int
    flags: int

    SIZE: ClassVar[int] = 20

    @classmethod
    def from_bytes(cls, data: bytes) -> ExternReference:
        if len(data) < cls.SIZE:
            raise ValueError(f"ExternReference requires {cls.SIZE} bytes, got {len(data)}")
        space_id, page_number, offset, length = struct.unpack(">IIIQ", data[-cls.SIZE :])
        return cls(
            space_id=SpaceId(space_id),
            page_number=PageNumber(page_number),
            offset=offset,
            length=length & 0xFFFFFFFF,
            flags=length >> 56,
        )

    @property
    def is_owner(self) -> bool:
        """False once ownership has passed to another record version."""
        return not self.flags & EXTERN_OWNER_FLAG

    @property
    def is_inherited(self) -> bool:
        return bool(self.flags & EXTERN_INHERITED_FLAG)


@dataclass(frozen=True)
class FieldValue:
    """One decoded field.

    Attributes:
        column: Descriptor the field was decoded with
        value: Decoded value (None for SQL NULL; the inline prefix for
            external fields)
        raw: Stored inline bytes
        offset: Byte offset of the inline bytes within the page
        extern: Overflow pointer when the value is stored externally
    """

    column: ColumnDescriptor
    value: Any
    raw: bytes
    offset: int
    extern: ExternReference | None = None

    @property
    def name(self) -> str:
        return self.column.name

    @property
    def is_null(self) -> bool:
        return self.value is None and self.extern is None

    @property
    def is_external(self) -> bool:
        return self.extern is not None


@dataclass(frozen=True)
class Record:
    """A physical record inside an index page.

    Attributes:
        page_number: Page the record lives on
        offset: Record origin within the page
        header: Decoded header
        fields: Decoded fields, empty for pseudo-records or when no shape
            was supplied
        length: Bytes of field data from the origin
        key_count: Number of leading fields that form the key (the shape's
            key width on leaves, every field before the child page number
            on node pointers)
    """

    page_number: PageNumber
    offset: int
    header: RecordHeader
    fields: tuple[FieldValue, ...] = ()
    length: int = 0
    key_count: int = 0

    @property
    def row_format(self) -> RowFormat:
        return self.header.row_format

    @property
    def kind(self) -> RecordKind:
        return self.header.kind

    @property
    def is_infimum(self) -> bool:
        return self.header.kind is RecordKind.INFIMUM

    @property
    def is_supremum(self) -> bool:
        return self.header.kind is RecordKind.SUPREMUM

    @property
    def is_user_record(self) -> bool:
        return self.header.kind in (RecordKind.CONVENTIONAL, RecordKind.NODE_POINTER)

    @property
    def is_node_pointer(self) -> bool:
        return self.header.kind is RecordKind.NODE_POINTER

    @property
    def deleted(self) -> bool:
        return self.header.deleted

    @property
    def min_rec(self) -> bool:
        return self.header.min_rec

    @property
    def heap_no(self) -> int:
        return self.header.heap_no

    @property
    def n_owned(self) -> int:
        return self.header.n_owned

    @property
    def next_offset(self) -> int | None:
        return self.header.next_offset

    @property
    def key_fields(self) -> tuple[FieldValue, ...]:
        return self.fields[: self.key_count]

    @property
    def key(self) -> tuple[Any, ...]:
        """Values of the key fields, in key order."""
        return tuple(f.value for f in self.key_fields)

    @property
    def row(self) -> dict[str, Any]:
        """Non-key, non-system values by column name."""
        return {
            f.name: f.value
            for f in self.fields[self.key_count :]
            if f.column.role is not FieldRole.SYSTEM
        }

    def field(self, name: str) -> FieldValue:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def values(self) -> dict[str, Any]:
        """All decoded values by field name."""
        return {f.name: f.value for f in self.fields}

    @property
    def child_page_number(self) -> PageNumber | None:
        """Child page of a node-pointer record."""
        if not self.is_node_pointer or not self.fields:
            return None
        return self.fields[-1].value

    @property
    def transaction_id(self) -> int | None:
        for f in self.fields:
            if f.name == "DB_TRX_ID" and f.column.role is FieldRole.SYSTEM:
                return f.value
        return None

    @property
    def roll_pointer(self) -> RollPointer | None:
        for f in self.fields:
            if f.name == "DB_ROLL_PTR" and f.column.role is FieldRole.SYSTEM:
                return f.value
        return None

    @property
    def external_fields(self) -> tuple[FieldValue, ...]:
        return tuple(f for f in self.fields if f.is_external)
