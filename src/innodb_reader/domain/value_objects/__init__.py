"""Value objects for the tablespace reader domain.

Exports:
    Identifiers:
        - PageNumber, SpaceId, LSN: Type-safe integer identifiers
        - FileAddress: (page, offset) pair linking list nodes across pages
        - FIL_NULL: "No page" sentinel
        - maybe_undefined: Map FIL_NULL to None

    Page Types:
        - PageType: FIL page type tags
        - page_type_name: Label for a known or unrecognized tag

    Columns:
        - TypeClass: Physical storage class of a column
        - FieldRole: Key, system or row field
        - IndexKind: Clustered or secondary index
        - ColumnDescriptor: Storage description of one field
        - RecordDescriber: Concrete record shape for one index
"""

from innodb_reader.domain.value_objects.columns import (
    CHILD_PAGE_NUMBER,
    DB_ROLL_PTR,
    DB_TRX_ID,
    ColumnDescriptor,
    FieldRole,
    IndexKind,
    RecordDescriber,
    TypeClass,
)
from innodb_reader.domain.value_objects.identifiers import (
    FIL_ADDR_SIZE,
    FIL_NULL,
    LSN,
    FileAddress,
    PageNumber,
    SpaceId,
    maybe_undefined,
)
from innodb_reader.domain.value_objects.page_type import PageType, page_type_name

__all__ = [
    # Identifiers
    "PageNumber",
    "SpaceId",
    "LSN",
    "FileAddress",
    "FIL_NULL",
    "FIL_ADDR_SIZE",
    "maybe_undefined",
    # Page types
    "PageType",
    "page_type_name",
    # Columns
    "TypeClass",
    "FieldRole",
    "IndexKind",
    "ColumnDescriptor",
    "RecordDescriber",
    "DB_TRX_ID",
    "DB_ROLL_PTR",
    "CHILD_PAGE_NUMBER",
]
