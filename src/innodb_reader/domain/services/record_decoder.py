"""Record and field decoding for the compact and redundant row formats.

The decoder reads the header stored backward from a record's origin and,
given a record shape, every field value. It never follows external field
pointers; those are exposed as ExternReference for explicit resolution.

Field sequence by record kind:

    clustered leaf      key..., DB_TRX_ID, DB_ROLL_PTR, row...
    secondary leaf      key..., primary key...
    node pointer        node key..., child page number (4 bytes)

where the node key is the primary key for clustered indexes and every
field of the leaf record for secondary indexes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from innodb_reader.domain.entities.record import (
    ExternReference,
    FieldValue,
    Record,
    RecordHeader,
    RecordKind,
    RowFormat,
)
from innodb_reader.domain.errors import ShapeMismatchError
from innodb_reader.domain.services.field_codec import decode_value
from innodb_reader.domain.value_objects.columns import (
    CHILD_PAGE_NUMBER,
    ColumnDescriptor,
    IndexKind,
)

if TYPE_CHECKING:
    from innodb_reader.domain.entities.index_page import IndexPage
    from innodb_reader.ports.inbound.record_shape import RecordShape


PSEUDO_RECORD_LENGTH = 8  # "infimum\0" / "supremum"

# Redundant header bit fields, as one big-endian u32 starting 6 bytes before the origin
_OLD_INFO_SHIFT = 28
_OLD_N_OWNED_SHIFT = 24
_OLD_HEAP_NO_MASK = 0xFFF800
_OLD_HEAP_NO_SHIFT = 11
_OLD_N_FIELDS_MASK = 0x7FE
_OLD_N_FIELDS_SHIFT = 1
_OLD_SHORT_FLAG = 0x1

# Redundant end offsets
_OLD_1BYTE_NULL = 0x80
_OLD_1BYTE_MASK = 0x7F
_OLD_2BYTE_NULL = 0x8000
_OLD_2BYTE_EXTERN = 0x4000
_OLD_2BYTE_MASK = 0x3FFF

# Compact variable lengths
_LEN_2BYTE_FLAG = 0x80
_LEN_EXTERN_FLAG = 0x40


def node_key_columns(shape: RecordShape) -> list[ColumnDescriptor]:
    """Fields preceding the child page number in a node-pointer record."""
    count = shape.key_count
    if getattr(shape, "kind", None) is IndexKind.SECONDARY:
        count = shape.field_count
    return [shape.field_at(i) for i in range(count)]


def record_columns(shape: RecordShape, kind: RecordKind) -> list[ColumnDescriptor]:
    if kind is RecordKind.NODE_POINTER:
        return node_key_columns(shape) + [CHILD_PAGE_NUMBER]
    return [shape.field_at(i) for i in range(shape.field_count)]


class RecordDecoder:
    """Decodes records from index pages.

    Example:
        >>> decoder = RecordDecoder(encoding="utf-8")
        >>> record = decoder.parse(page, 120, shape)
        >>> record.key, record.row
        ((1,), {'name': 'alice'})
    """

    def __init__(
        self,
        encoding: str = "utf-8",
        observer: Callable[[Record], None] | None = None,
    ) -> None:
        """
        Args:
            encoding: Default charset for textual columns
            observer: Called with every record decoded with a shape
        """
        self._encoding = encoding
        self._observer = observer

    @property
    def encoding(self) -> str:
        return self._encoding

    # Headers

    def read_header(self, page: IndexPage, offset: int) -> RecordHeader:
        """Decode the record header that precedes offset."""
        if page.is_compact:
            return self._compact_header(page, offset)
        return self._redundant_header(page, offset)

    def _compact_header(self, page: IndexPage, offset: int) -> RecordHeader:
        cursor = page.cursor(offset - RecordHeader.COMPACT_SIZE)
        info_owned = cursor.uint8()
        heap_status = cursor.uint16()
        relative_next = cursor.uint16()

        status = heap_status & 0x7
        if status > RecordKind.SUPREMUM:
            raise page.malformed(f"Invalid record status {status}", offset)
        kind = RecordKind(status)

        next_offset = None
        if relative_next:
            next_offset = (offset + relative_next) % 0x10000

        return RecordHeader(
            row_format=RowFormat.COMPACT,
            info_bits=info_owned >> 4,
            n_owned=info_owned & 0xF,
            heap_no=heap_status >> 3,
            kind=kind,
            next_offset=next_offset,
        )

    def _redundant_header(self, page: IndexPage, offset: int) -> RecordHeader:
        cursor = page.cursor(offset - RecordHeader.REDUNDANT_SIZE)
        bits = cursor.uint32()
        next_offset = cursor.uint16()

        heap_no = (bits & _OLD_HEAP_NO_MASK) >> _OLD_HEAP_NO_SHIFT
        if heap_no == 0:
            kind = RecordKind.INFIMUM
        elif heap_no == 1:
            kind = RecordKind.SUPREMUM
        elif page.level > 0:
            kind = RecordKind.NODE_POINTER
        else:
            kind = RecordKind.CONVENTIONAL

        return RecordHeader(
            row_format=RowFormat.REDUNDANT,
            info_bits=bits >> _OLD_INFO_SHIFT,
            n_owned=(bits >> _OLD_N_OWNED_SHIFT) & 0xF,
            heap_no=heap_no,
            kind=kind,
            next_offset=next_offset or None,
            n_fields=(bits & _OLD_N_FIELDS_MASK) >> _OLD_N_FIELDS_SHIFT,
            short_offsets=bool(bits & _OLD_SHORT_FLAG),
        )

    # Records

    def parse(self, page: IndexPage, offset: int, shape: RecordShape | None = None) -> Record:
        """Decode the record whose origin is offset.

        Without a shape only the header is decoded.

        Raises:
            ShapeMismatchError: If the shape disagrees with the stored layout
            MalformedPageError: If the record reaches outside the page
        """
        header = self.read_header(page, offset)

        if header.kind in (RecordKind.INFIMUM, RecordKind.SUPREMUM):
            return Record(page.page_number, offset, header, (), PSEUDO_RECORD_LENGTH)
        if shape is None:
            return Record(page.page_number, offset, header)

        columns = record_columns(shape, header.kind)
        if header.row_format is RowFormat.COMPACT:
            fields, length = self._compact_fields(page, offset, shape, columns)
        else:
            fields, length = self._redundant_fields(page, offset, header, columns)

        if header.kind is RecordKind.NODE_POINTER:
            key_count = len(columns) - 1
        else:
            key_count = shape.key_count
        record = Record(page.page_number, offset, header, tuple(fields), length, key_count)
        if self._observer is not None:
            self._observer(record)
        return record

    def _compact_fields(
        self,
        page: IndexPage,
        offset: int,
        shape: RecordShape,
        columns: list[ColumnDescriptor],
    ) -> tuple[list[FieldValue], int]:
        # The bitmap is sized for every nullable field of the index, even in
        # node pointers that store only some of them.
        n_nullable = sum(
            1 for i in range(shape.field_count) if shape.field_at(i).nullable
        )
        cursor = page.cursor(offset - RecordHeader.COMPACT_SIZE).backward()
        null_bits = int.from_bytes(cursor.read((n_nullable + 7) // 8), "big")

        spans: list[tuple[int, bool, bool]] = []
        null_index = 0
        for column in columns:
            if column.nullable:
                is_null = bool(null_bits >> null_index & 1)
                null_index += 1
                if is_null:
                    spans.append((0, False, True))
                    continue
            if not column.is_variable:
                spans.append((column.fixed_length or 0, False, False))
                continue

            first = cursor.uint8()
            extern = False
            length = first
            if column.is_big and first & _LEN_2BYTE_FLAG:
                second = cursor.uint8()
                length = ((first & 0x3F) << 8) | second
                extern = bool(first & _LEN_EXTERN_FLAG)
            spans.append((length, extern, False))

        return self._materialize(page, offset, columns, spans)

    def _redundant_fields(
        self,
        page: IndexPage,
        offset: int,
        header: RecordHeader,
        columns: list[ColumnDescriptor],
    ) -> tuple[list[FieldValue], int]:
        if header.n_fields != len(columns):
            raise ShapeMismatchError(
                f"Record stores {header.n_fields} fields, shape describes {len(columns)}",
                page_number=page.page_number,
                offset=offset,
            )

        cursor = page.cursor(offset - RecordHeader.REDUNDANT_SIZE).backward()
        width = 1 if header.short_offsets else 2

        spans: list[tuple[int, bool, bool]] = []
        previous_end = 0
        for _ in columns:
            raw = cursor.uint(width)
            if width == 1:
                end, is_null, extern = raw & _OLD_1BYTE_MASK, bool(raw & _OLD_1BYTE_NULL), False
            else:
                end = raw & _OLD_2BYTE_MASK
                is_null = bool(raw & _OLD_2BYTE_NULL)
                extern = bool(raw & _OLD_2BYTE_EXTERN)
            if end < previous_end:
                raise ShapeMismatchError(
                    "Field end offsets are not ascending",
                    page_number=page.page_number,
                    offset=offset,
                )
            # Null fixed-width fields still reserve their bytes
            spans.append((end - previous_end, extern, is_null))
            previous_end = end

        return self._materialize(page, offset, columns, spans)

    def _materialize(
        self,
        page: IndexPage,
        offset: int,
        columns: list[ColumnDescriptor],
        spans: list[tuple[int, bool, bool]],
    ) -> tuple[list[FieldValue], int]:
        data = page.data
        limit = page.heap_top or page.size
        position = offset
        fields: list[FieldValue] = []

        for column, (length, extern, is_null) in zip(columns, spans):
            if is_null:
                fields.append(FieldValue(column, None, b"", position))
                position += length
                continue

            if (
                not extern
                and column.is_variable
                and column.length is not None
                and length > column.length
            ):
                raise ShapeMismatchError(
                    f"{column.name}: stored length {length} exceeds maximum {column.length}",
                    page_number=page.page_number,
                    offset=position,
                )
            if position + length > limit:
                raise ShapeMismatchError(
                    f"{column.name}: field of {length} bytes overruns the record area",
                    page_number=page.page_number,
                    offset=position,
                )

            raw = bytes(data[position : position + length])
            if extern:
                if length < ExternReference.SIZE:
                    raise ShapeMismatchError(
                        f"{column.name}: external field shorter than its pointer",
                        page_number=page.page_number,
                        offset=position,
                    )
                fields.append(
                    FieldValue(
                        column,
                        raw[: -ExternReference.SIZE],
                        raw,
                        position,
                        extern=ExternReference.from_bytes(raw),
                    )
                )
            else:
                try:
                    value = decode_value(column, raw, self._encoding)
                except ValueError as exc:
                    raise ShapeMismatchError(
                        str(exc), page_number=page.page_number, offset=position
                    ) from exc
                fields.append(FieldValue(column, value, raw, position))
            position += length

        return fields, position - offset

