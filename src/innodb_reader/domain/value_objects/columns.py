"""Column descriptors and record shapes.

A record shape tells the record decoder how many fields an index record
carries and how each one is stored. The reader never derives shapes on its
own; callers build them from whatever schema source they have (data
dictionary, .frm/SDI metadata, or by hand) and pass them in explicitly.

Field order inside an index record:

    clustered leaf:    key fields, DB_TRX_ID, DB_ROLL_PTR, non-key fields
    secondary leaf:    key fields, primary key fields
    node pointer:      key fields, child page number
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TypeClass(Enum):
    """Physical storage class of a column."""

    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    DOUBLE = "double"
    CHAR = "char"
    BINARY = "binary"
    VARCHAR = "varchar"
    VARBINARY = "varbinary"
    TEXT = "text"
    BLOB = "blob"
    TRX_ID = "trx_id"
    ROLL_PTR = "roll_ptr"
    CHILD_PAGE = "child_page"


class FieldRole(Enum):
    """Where a field sits in the index record."""

    KEY = "key"
    SYSTEM = "system"
    ROW = "row"


class IndexKind(Enum):
    """Kind of B-tree index a shape describes."""

    CLUSTERED = "clustered"
    SECONDARY = "secondary"


INTEGER_WIDTHS = frozenset({1, 2, 3, 4, 6, 8})

_FIXED_WIDTHS = {
    TypeClass.FLOAT: 4,
    TypeClass.DOUBLE: 8,
    TypeClass.TRX_ID: 6,
    TypeClass.ROLL_PTR: 7,
    TypeClass.CHILD_PAGE: 4,
}

_VARIABLE = frozenset({TypeClass.VARCHAR, TypeClass.VARBINARY, TypeClass.TEXT, TypeClass.BLOB})
_TEXTUAL = frozenset({TypeClass.CHAR, TypeClass.VARCHAR, TypeClass.TEXT})


@dataclass(frozen=True)
class ColumnDescriptor:
    """Storage description of one field.

    Attributes:
        name: Column name
        type_class: Physical storage class
        nullable: Whether the column takes a bit in the null bitmap
        length: Byte width for fixed-width classes; maximum byte length for
            variable-length classes (None means unbounded, as for BLOB/TEXT)
        role: Position group of the field in the record
        charset: Text encoding for textual classes (None uses the reader default)
    """

    name: str
    type_class: TypeClass
    nullable: bool = False
    length: int | None = None
    role: FieldRole = FieldRole.ROW
    charset: str | None = None

    def __post_init__(self) -> None:
        """Validate the width for the storage class."""
        if self.type_class in (TypeClass.INT, TypeClass.UINT):
            if self.length not in INTEGER_WIDTHS:
                raise ValueError(
                    f"{self.name}: integer width must be one of "
                    f"{sorted(INTEGER_WIDTHS)}, got {self.length}"
                )
        elif self.type_class in _FIXED_WIDTHS:
            expected = _FIXED_WIDTHS[self.type_class]
            if self.length is None:
                object.__setattr__(self, "length", expected)
            elif self.length != expected:
                raise ValueError(
                    f"{self.name}: {self.type_class.value} is {expected} bytes, got {self.length}"
                )
        elif self.type_class in (TypeClass.CHAR, TypeClass.BINARY):
            if self.length is None or self.length < 0:
                raise ValueError(f"{self.name}: fixed-width column needs a length")

    @property
    def is_variable(self) -> bool:
        """True when the length is stored in the record's length table."""
        return self.type_class in _VARIABLE

    @property
    def is_textual(self) -> bool:
        return self.type_class in _TEXTUAL

    @property
    def fixed_length(self) -> int | None:
        """Byte width for fixed-width fields, None for variable-length ones."""
        if self.is_variable:
            return None
        return self.length

    @property
    def is_big(self) -> bool:
        """True when the stored length may take two bytes.

        Only columns whose maximum length exceeds 255 bytes (or is unbounded)
        use the two-byte length form, and only those can be stored externally.
        """
        return self.is_variable and (self.length is None or self.length > 255)


DB_TRX_ID = ColumnDescriptor("DB_TRX_ID", TypeClass.TRX_ID, role=FieldRole.SYSTEM)
DB_ROLL_PTR = ColumnDescriptor("DB_ROLL_PTR", TypeClass.ROLL_PTR, role=FieldRole.SYSTEM)
CHILD_PAGE_NUMBER = ColumnDescriptor(
    "CHILD_PAGE_NUMBER", TypeClass.CHILD_PAGE, role=FieldRole.SYSTEM
)


@dataclass(frozen=True)
class RecordDescriber:
    """A concrete record shape for one index.

    Implements the RecordShape capability: ``field_count``, ``field_at(i)``
    and ``key_count``. Key columns come first; clustered indexes get the
    transaction id and roll pointer system columns inserted after the key.

    Example:
        >>> shape = RecordDescriber.clustered(
        ...     key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
        ...     row=[ColumnDescriptor("name", TypeClass.VARCHAR, nullable=True, length=255)],
        ... )
        >>> [shape.field_at(i).name for i in range(shape.field_count)]
        ['id', 'DB_TRX_ID', 'DB_ROLL_PTR', 'name']
    """

    kind: IndexKind
    key: tuple[ColumnDescriptor, ...]
    row: tuple[ColumnDescriptor, ...] = ()
    _fields: tuple[ColumnDescriptor, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("A record shape needs at least one key column")

        key = tuple(_with_role(c, FieldRole.KEY) for c in self.key)
        row = tuple(_with_role(c, FieldRole.ROW) for c in self.row)
        object.__setattr__(self, "key", key)
        object.__setattr__(self, "row", row)

        if self.kind is IndexKind.CLUSTERED:
            fields = key + (DB_TRX_ID, DB_ROLL_PTR) + row
        else:
            fields = key + row
        object.__setattr__(self, "_fields", fields)

    @classmethod
    def clustered(
        cls,
        key: list[ColumnDescriptor] | tuple[ColumnDescriptor, ...],
        row: list[ColumnDescriptor] | tuple[ColumnDescriptor, ...] = (),
    ) -> RecordDescriber:
        """Shape of a clustered (primary key) index."""
        return cls(kind=IndexKind.CLUSTERED, key=tuple(key), row=tuple(row))

    @classmethod
    def secondary(
        cls,
        key: list[ColumnDescriptor] | tuple[ColumnDescriptor, ...],
        primary_key: list[ColumnDescriptor] | tuple[ColumnDescriptor, ...] = (),
    ) -> RecordDescriber:
        """Shape of a secondary index; leaf records end with the primary key."""
        return cls(kind=IndexKind.SECONDARY, key=tuple(key), row=tuple(primary_key))

    @property
    def field_count(self) -> int:
        return len(self._fields)

    @property
    def key_count(self) -> int:
        return len(self.key)

    def field_at(self, index: int) -> ColumnDescriptor:
        return self._fields[index]


def _with_role(column: ColumnDescriptor, role: FieldRole) -> ColumnDescriptor:
    if column.role is role:
        return column
    return ColumnDescriptor(
        name=column.name,
        type_class=column.type_class,
        nullable=column.nullable,
        length=column.length,
        role=role,
        charset=column.charset,
    )
