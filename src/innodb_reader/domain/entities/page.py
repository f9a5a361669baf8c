"""Page entity: FIL header/trailer and page type dispatch.

Every page, whatever its type, starts with a 38-byte FIL header and ends
with an 8-byte FIL trailer:

    +------+--------+--------+--------+--------+------+-----------+----------+
    | csum | page # | prev   | next   | LSN    | type | flush LSN | space id |
    | 4B   | 4B     | 4B     | 4B     | 8B     | 2B   | 8B        | 4B       |
    +------+--------+--------+--------+--------+------+-----------+----------+
    ... type-specific body ...
    +-----------------+----------------+
    | old-style csum  | LSN low 32     |
    +-----------------+----------------+

Page.parse decodes these and hands the buffer to the subclass registered
for the type tag. Tags without a registered subclass (compressed, encrypted,
and any tag a newer server may add) decode to the base Page, which keeps
the raw bytes and is never an error.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

from innodb_reader.domain.entities.cursor import ByteCursor
from innodb_reader.domain.errors import MalformedPageError
from innodb_reader.domain.services.checksum import (
    ChecksumAlgorithm,
    ChecksumResult,
    validate,
)
from innodb_reader.domain.value_objects.identifiers import (
    LSN,
    PageNumber,
    SpaceId,
    maybe_undefined,
)
from innodb_reader.domain.value_objects.page_type import PageType, page_type_name


MIN_PAGE_SIZE = 4096
MAX_PAGE_SIZE = 65536
DEFAULT_PAGE_SIZE = 16384


def is_valid_page_size(size: int) -> bool:
    return MIN_PAGE_SIZE <= size <= MAX_PAGE_SIZE and not size & (size - 1)


@dataclass(frozen=True, slots=True)
class FilHeader:
    """Universal page header.

    Attributes:
        checksum: Header checksum field (space id on very old pages)
        page_number: Page number the page was written as
        prev: Previous page at the same level, None when absent
        next: Next page at the same level, None when absent
        lsn: LSN of the newest change written to the page
        page_type: Page type tag (PageType, or the raw int when unknown)
        flush_lsn: Flush LSN (page 0 of the system space only)
        space_id: Tablespace id
    """

    checksum: int
    page_number: PageNumber
    prev: PageNumber | None
    next: PageNumber | None
    lsn: LSN
    page_type: PageType | int
    flush_lsn: LSN
    space_id: SpaceId

    SIZE: ClassVar[int] = 38
    FORMAT: ClassVar[str] = ">IIIIQHQI"

    @classmethod
    def from_bytes(cls, data: bytes) -> FilHeader:
        (
            checksum,
            page_number,
            prev,
            next_,
            lsn,
            page_type,
            flush_lsn,
            space_id,
        ) = struct.unpack_from(cls.FORMAT, data, 0)
        return cls(
            checksum=checksum,
            page_number=PageNumber(page_number),
            prev=maybe_undefined(prev),
            next=maybe_undefined(next_),
            lsn=LSN(lsn),
            page_type=PageType.lookup(page_type),
            flush_lsn=LSN(flush_lsn),
            space_id=SpaceId(space_id),
        )


@dataclass(frozen=True, slots=True)
class FilTrailer:
    """Universal page trailer (last 8 bytes)."""

    checksum: int
    lsn_low32: int

    SIZE: ClassVar[int] = 8
    FORMAT: ClassVar[str] = ">II"

    @classmethod
    def from_bytes(cls, data: bytes) -> FilTrailer:
        checksum, lsn_low32 = struct.unpack_from(cls.FORMAT, data, len(data) - cls.SIZE)
        return cls(checksum=checksum, lsn_low32=lsn_low32)


_PAGE_CLASSES: dict[int, type[Page]] = {}


def _load_page_classes() -> None:
    # Subclasses register themselves when their modules are imported
    from innodb_reader.domain.entities import (  # noqa: F401
        blob_page,
        fsp_page,
        index_page,
        inode,
        system_pages,
        undo_page,
    )


class Page:
    """A decoded page.

    The base class is also the opaque variant for unrecognized page types:
    it exposes the FIL header and trailer and the raw bytes. Subclasses add
    typed accessors for their body and are selected by Page.parse.

    Pages are immutable; accessors decode lazily from the owned buffer.

    Example:
        >>> page = Page.parse(raw, page_size=16384)
        >>> page.page_type
        <PageType.INDEX: 17855>
    """

    PAGE_TYPES: ClassVar[tuple[PageType, ...]] = ()

    def __init_subclass__(cls, page_types: tuple[PageType, ...] = (), **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        if page_types:
            cls.PAGE_TYPES = page_types
            for tag in page_types:
                _PAGE_CLASSES[int(tag)] = cls

    def __init__(
        self,
        data: bytes,
        header: FilHeader,
        trailer: FilTrailer,
        checksum: ChecksumResult | None = None,
    ) -> None:
        self._data = bytes(data)
        self._header = header
        self._trailer = trailer
        self._checksum = checksum

    @classmethod
    def parse(
        cls,
        data: bytes,
        page_size: int | None = None,
        *,
        page_number: int | None = None,
        checksum_algorithm: ChecksumAlgorithm = ChecksumAlgorithm.DETECT,
        verify_checksum: bool = True,
    ) -> Page:
        """Decode a raw page buffer.

        Args:
            data: Raw page bytes
            page_size: Tablespace page size (defaults to len(data), which
                must then be a valid page size)
            page_number: Page number the buffer was read from (error context)
            checksum_algorithm: Algorithm to validate against
            verify_checksum: Skip validation when False

        Returns:
            The page, as the subclass registered for its type tag

        Raises:
            MalformedPageError: If the buffer length is not the page size or
                a header field is out of range for the page type
        """
        if page_size is None:
            if not is_valid_page_size(len(data)):
                raise MalformedPageError(
                    f"Buffer of {len(data)} bytes is not a valid page size",
                    page_number=page_number,
                )
        elif len(data) != page_size:
            raise MalformedPageError(
                f"Buffer of {len(data)} bytes does not match page size {page_size}",
                page_number=page_number,
            )

        header = FilHeader.from_bytes(data)
        trailer = FilTrailer.from_bytes(data)
        checksum = validate(data, checksum_algorithm) if verify_checksum else None

        _load_page_classes()
        page_class = _PAGE_CLASSES.get(int(header.page_type), Page)
        page = page_class(data, header, trailer, checksum)
        page._check()
        return page

    def _check(self) -> None:
        """Raise MalformedPageError for header fields out of range."""

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(page_number={self.page_number}, "
            f"type={self.type_name}, lsn={self.lsn})"
        )

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def header(self) -> FilHeader:
        return self._header

    @property
    def trailer(self) -> FilTrailer:
        return self._trailer

    @property
    def checksum(self) -> ChecksumResult | None:
        """Checksum validation result, or None if validation was skipped."""
        return self._checksum

    @property
    def page_number(self) -> PageNumber:
        return self._header.page_number

    @property
    def page_type(self) -> PageType | int:
        return self._header.page_type

    @property
    def type_name(self) -> str:
        return page_type_name(self._header.page_type)

    @property
    def prev(self) -> PageNumber | None:
        return self._header.prev

    @property
    def next(self) -> PageNumber | None:
        return self._header.next

    @property
    def lsn(self) -> LSN:
        return self._header.lsn

    @property
    def space_id(self) -> SpaceId:
        return self._header.space_id

    @property
    def is_opaque(self) -> bool:
        """True when no typed decoder exists for this page's type tag."""
        return type(self) is Page

    @property
    def lsn_consistent(self) -> bool:
        """Whether the trailer's LSN copy matches the header LSN."""
        return self._trailer.lsn_low32 == self._header.lsn & 0xFFFFFFFF

    def cursor(self, offset: int = 0) -> ByteCursor:
        """A cursor over this page's bytes."""
        return ByteCursor(self._data, offset, page_number=self._header.page_number)

    def malformed(self, message: str, offset: int | None = None) -> MalformedPageError:
        """Build a MalformedPageError scoped to this page."""
        return MalformedPageError(message, page_number=self.page_number, offset=offset)
