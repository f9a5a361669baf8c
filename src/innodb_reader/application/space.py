"""Space - entry point for reading one tablespace.

Space turns a PageSource into typed pages and hangs the tablespace-wide
walks off them: the space header, extent descriptors, segment inodes,
B-tree indexes, external fields and undo logs. It is also where the
reader's observability lives: checksum mismatches and chain corruption are
logged and counted here, and index walks run inside trace spans.

Usage:
    from innodb_reader.application import Space

    with Space.open("employees.ibd") as space:
        header = space.fsp_header
        index = space.index(header_root, shape)
        for record in index.each_record():
            print(record.key, record.row)

Thread Safety:
    Space keeps no per-read state. It is safe to share between threads when
    its PageSource is (FileSpace is).
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Any

from innodb_reader.adapters.outbound.file_space import FileSpace
from innodb_reader.domain.entities.blob_page import read_external
from innodb_reader.domain.entities.flst import ListNode, walk_list
from innodb_reader.domain.entities.fsp_page import FspHdrXdesPage, SpaceHeader
from innodb_reader.domain.entities.index_page import IndexPage
from innodb_reader.domain.entities.inode import Inode, InodePage
from innodb_reader.domain.entities.page import Page
from innodb_reader.domain.entities.record import ExternReference, Record
from innodb_reader.domain.entities.system_pages import (
    DICT_HEADER_PAGE_NO,
    TRX_SYS_PAGE_NO,
    DictHeader,
    SysPage,
    TrxSysPage,
)
from innodb_reader.domain.entities.xdes import XdesEntry
from innodb_reader.domain.errors import InnodbReaderError, MalformedPageError
from innodb_reader.domain.services.btree_index import BTreeIndex
from innodb_reader.domain.services.chain import ChainSequence
from innodb_reader.domain.services.checksum import ChecksumAlgorithm
from innodb_reader.domain.services.record_decoder import RecordDecoder
from innodb_reader.domain.services.undo_log import UndoLog
from innodb_reader.domain.value_objects import FileAddress, PageNumber
from innodb_reader.infrastructure.config import Config, get_config
from innodb_reader.infrastructure.logging import get_logger
from innodb_reader.infrastructure.metrics import MetricsRegistry, get_metrics
from innodb_reader.infrastructure.tracing import get_tracer, trace_span
from innodb_reader.ports.inbound.record_shape import RecordShape
from innodb_reader.ports.outbound.page_source import PageSource


logger = get_logger(__name__)


class Space:
    """A tablespace read through a PageSource.

    Implements the PageReader port consumed by the B-tree engine, the
    inode extent walks, external field resolution and the undo log walk.

    Attributes:
        source: Where raw pages come from
        page_size: Size of each page in bytes
    """

    def __init__(
        self,
        source: PageSource,
        checksum_algorithm: ChecksumAlgorithm | str | None = None,
        verify_checksum: bool | None = None,
        strict: bool | None = None,
        encoding: str | None = None,
        metrics: MetricsRegistry | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the space.

        Args:
            source: Raw page source
            checksum_algorithm: Algorithm pages are validated against
                (default from config)
            verify_checksum: Validate checksums at all (default from config)
            strict: Whether lazy chain walks raise on corruption
                (default from config)
            encoding: Default charset for text columns (default from config)
            metrics: Metrics registry (default: the process registry)
            config: Configuration (default: the global config)
        """
        config = config or get_config()
        if checksum_algorithm is None:
            checksum_algorithm = config.checksum.algorithm
        self._source = source
        self._checksum_algorithm = ChecksumAlgorithm(checksum_algorithm)
        self._verify_checksum = (
            config.checksum.verify if verify_checksum is None else verify_checksum
        )
        self._strict = config.reader.strict_chains if strict is None else strict
        self._metrics = metrics or get_metrics()
        self._decoder = RecordDecoder(
            encoding=encoding or config.reader.text_encoding,
            observer=self._record_decoded,
        )

    @classmethod
    def open(
        cls,
        paths: str | Path | Sequence[str | Path],
        page_size: int | None = None,
        **kwargs: Any,
    ) -> Space:
        """Open tablespace files on disk.

        Args:
            paths: One .ibd file, or the ibdata files of a system tablespace
            page_size: Page size override (default: detect from page 0)
            **kwargs: Passed to Space()
        """
        return cls(FileSpace(paths, page_size=page_size), **kwargs)

    def close(self) -> None:
        """Close the page source if it holds resources."""
        close = getattr(self._source, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> Space:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()

    @property
    def source(self) -> PageSource:
        return self._source

    @property
    def page_size(self) -> int:
        return self._source.page_size

    @property
    def page_count(self) -> int:
        return self._source.page_count

    @property
    def strict(self) -> bool:
        return self._strict

    @property
    def decoder(self) -> RecordDecoder:
        return self._decoder

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    # Observability hooks

    def _record_decoded(self, record: Record) -> None:
        self._metrics.records_decoded_total.labels(
            row_format=record.header.row_format.value
        ).inc()

    def _chain_error(self, kind: str) -> Callable[[InnodbReaderError], None]:
        def report(error: InnodbReaderError) -> None:
            self._metrics.chain_errors_total.labels(kind=kind).inc()
            logger.warning(
                "chain_corrupt",
                kind=kind,
                page_number=error.page_number,
                offset=error.offset,
                error=str(error),
                strict=self._strict,
            )

        return report

    def _leaf_reached(self, page: IndexPage) -> None:
        self._metrics.btree_descents_total.inc()
        logger.debug("btree_leaf_reached", page_number=page.page_number, index_id=page.index_id)

    # Pages

    def page(self, page_number: PageNumber | int) -> Page:
        """Read and decode one page.

        A checksum mismatch is logged and counted; the page is still
        returned.

        Raises:
            MalformedPageError: If the page is outside the tablespace or its
                header fields are out of range for its type
        """
        raw = self._source.read_page(PageNumber(page_number))
        page = Page.parse(
            raw,
            self._source.page_size,
            page_number=page_number,
            checksum_algorithm=self._checksum_algorithm,
            verify_checksum=self._verify_checksum,
        )
        self._metrics.pages_read_total.labels(page_type=page.type_name).inc()

        if page.checksum is not None and not page.checksum.valid:
            self._metrics.checksum_mismatches_total.labels(
                algorithm=self._checksum_algorithm.value
            ).inc()
            logger.warning(
                "checksum_mismatch",
                page_number=page_number,
                page_type=page.type_name,
                algorithm=self._checksum_algorithm.value,
                stored=page.checksum.stored,
                stored_trailer=page.checksum.stored_trailer,
            )
        if page.page_number != page_number and not page.is_opaque:
            logger.warning(
                "page_number_mismatch",
                page_number=page_number,
                stored_page_number=page.page_number,
            )
        return page

    def each_page(self) -> Iterator[Page]:
        """Every page of the tablespace in file order."""
        for page_number in range(self.page_count):
            yield self.page(page_number)

    def _typed_page(self, page_number: int, page_class: type[Page]) -> Any:
        page = self.page(page_number)
        if not isinstance(page, page_class):
            raise MalformedPageError(
                f"Expected {page_class.__name__}, found {page.type_name}",
                page_number=page_number,
            )
        return page

    # Space management

    @property
    def fsp_header(self) -> SpaceHeader:
        """The file space header on page 0.

        Raises:
            MalformedPageError: If page 0 is not an FSP_HDR page
        """
        page: FspHdrXdesPage = self._typed_page(0, FspHdrXdesPage)
        header = page.space_header
        if header is None:
            raise MalformedPageError("Page 0 is not an FSP_HDR page", page_number=0)
        return header

    @property
    def space_id(self) -> int:
        return self.fsp_header.space_id

    def each_xdes_page(self) -> Iterator[FspHdrXdesPage]:
        """FSP_HDR and XDES pages, one per page_size pages of space."""
        size = min(self.fsp_header.size, self.page_count)
        for page_number in range(0, size, self.page_size):
            yield self._typed_page(page_number, FspHdrXdesPage)

    def each_xdes(self) -> Iterator[XdesEntry]:
        """Every extent descriptor covering the space, in page order."""
        size = self.fsp_header.size
        for page in self.each_xdes_page():
            yield from page.xdes_entries(space_size=size)

    def xdes_for_page(self, page_number: int) -> XdesEntry:
        """The extent descriptor covering a page."""
        descriptor_page = page_number - page_number % self.page_size
        page: FspHdrXdesPage = self._typed_page(descriptor_page, FspHdrXdesPage)
        return page.xdes_entry((page_number - descriptor_page) // page.extent_pages)

    def each_inode_page(self) -> ChainSequence[InodePage]:
        """Inode pages on the space's full and free inode lists."""
        header = self.fsp_header

        def read_node(address: FileAddress) -> ListNode:
            page: InodePage = self._typed_page(address.page_number, InodePage)
            return page.list_node

        def walk() -> Iterator[InodePage]:
            for base in (header.inodes_full, header.inodes_free):
                for address in walk_list(base, read_node):
                    yield self._typed_page(address.page_number, InodePage)

        return ChainSequence(walk, strict=self._strict, on_error=self._chain_error("inode_list"))

    def each_inode(self) -> Iterator[Inode]:
        """Every allocated file segment inode."""
        for page in self.each_inode_page():
            yield from page.inodes()

    def inode(self, page_number: int, offset: int) -> Inode:
        """The inode an FSEG header points at."""
        page: InodePage = self._typed_page(page_number, InodePage)
        return page.inode_for_offset(offset)

    def extents(self, inode: Inode) -> ChainSequence[XdesEntry]:
        """Extents owned by a segment."""
        return ChainSequence(
            lambda: iter(inode.extents(self, strict=True)),
            strict=self._strict,
            on_error=self._chain_error("extent_list"),
        )

    # Indexes

    def index(
        self,
        root_page_number: PageNumber | int,
        shape: RecordShape,
        strict: bool | None = None,
    ) -> BTreeIndex:
        """A B-tree index rooted at a page, decoded with a record shape."""
        return TracedIndex(
            self,
            root_page_number,
            shape,
            decoder=self._decoder,
            strict=self._strict if strict is None else strict,
            on_descent=self._leaf_reached,
            on_chain_error=self._chain_error("index"),
        )

    def index_page(self, page_number: PageNumber | int) -> IndexPage:
        return self._typed_page(page_number, IndexPage)

    def records(
        self,
        page_number: PageNumber | int,
        shape: RecordShape | None = None,
    ) -> ChainSequence[Record]:
        """User records of one index page."""
        page = self.index_page(page_number)
        return ChainSequence(
            lambda: iter(page.user_records(shape, strict=True, decoder=self._decoder)),
            strict=self._strict,
            on_error=self._chain_error("record"),
        )

    # External fields

    def read_external(self, ref: ExternReference, max_length: int | None = None) -> bytes:
        """Resolve an external field pointer to its overflow bytes.

        Args:
            ref: Pointer taken from a FieldValue
            max_length: Stop once this many bytes are collected

        Raises:
            CorruptChainError: If the overflow page chain loops
            MalformedPageError: If the chain leads to a page of another type
        """
        with trace_span(
            "space.read_external",
            {"innodb.page_number": ref.page_number, "innodb.length": ref.length},
        ):
            return read_external(_CountingReader(self), ref, max_length)

    def field_value(self, record: Record, name: str, max_length: int | None = None) -> Any:
        """A field's complete value, resolving external storage if needed.

        Textual columns are decoded with the column charset (or the space's
        default); other external columns are returned as bytes.
        """
        field = record.field(name)
        if not field.is_external:
            return field.value
        data = field.raw[: -ExternReference.SIZE] + self.read_external(field.extern, max_length)
        if field.column.is_textual:
            return data.decode(field.column.charset or self._decoder.encoding, errors="replace")
        return data

    # System tablespace

    def trx_sys(self) -> TrxSysPage:
        return self._typed_page(TRX_SYS_PAGE_NO, TrxSysPage)

    def dict_header(self) -> DictHeader:
        page: SysPage = self._typed_page(DICT_HEADER_PAGE_NO, SysPage)
        header = page.dict_header
        if header is None:
            raise MalformedPageError("No data dictionary header", page_number=DICT_HEADER_PAGE_NO)
        return header

    # Undo

    def undo_log(self, page_number: PageNumber | int, header_offset: int | None = None) -> UndoLog:
        """The undo log whose header sits on page_number."""
        return UndoLog(self, page_number, header_offset, strict=self._strict)


class TracedIndex(BTreeIndex):
    """BTreeIndex whose descents and leaf scans are traced."""

    def descend_to_leaf(self, key: Sequence[Any]) -> IndexPage:
        with trace_span(
            "btree.descend",
            {"innodb.root_page": self.root_page_number, "innodb.key": repr(tuple(key))},
        ):
            return super().descend_to_leaf(key)

    def _walk_records(self) -> Iterator[Record]:
        # Spans are not made current across yields
        span = get_tracer().start_span(
            "btree.scan", attributes={"innodb.root_page": self.root_page_number}
        )
        count = 0
        try:
            for record in super()._walk_records():
                count += 1
                yield record
        finally:
            span.set_attribute("innodb.records", count)
            span.end()


class _CountingReader:
    """PageReader that counts the overflow pages read through it."""

    def __init__(self, space: Space) -> None:
        self._space = space

    @property
    def page_size(self) -> int:
        return self._space.page_size

    def page(self, page_number: PageNumber | int) -> Page:
        page = self._space.page(page_number)
        self._space.metrics.external_pages_read_total.inc()
        return page

