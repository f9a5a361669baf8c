"""Index (B-tree node) pages.

Layout of an INDEX page:

    38    page header (36 bytes)
    74    FSEG header of the leaf segment     (root page only)
    84    FSEG header of the non-leaf segment (root page only)
    94    system records: infimum, supremum
          user records, growing up to heap_top
          ... free space ...
          page directory slots, growing down from size - 10
    -8    FIL trailer

The records form a singly linked list in key order from infimum to
supremum. The page directory holds the origin of every group-owning record,
slot 0 being infimum and the last slot supremum, which allows a binary
search before a short linear scan.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import IntEnum
from functools import cached_property
from typing import TYPE_CHECKING, Any, ClassVar

from innodb_reader.domain.entities.page import FilHeader, FilTrailer, Page
from innodb_reader.domain.entities.record import Record, RowFormat
from innodb_reader.domain.errors import CorruptChainError
from innodb_reader.domain.services.chain import ChainSequence
from innodb_reader.domain.services.key_compare import DEFAULT_ENCODING, compare_keys
from innodb_reader.domain.services.record_decoder import RecordDecoder
from innodb_reader.domain.value_objects.identifiers import PageNumber, SpaceId
from innodb_reader.domain.value_objects.page_type import PageType

if TYPE_CHECKING:
    from innodb_reader.ports.inbound.record_shape import RecordShape


class PageDirection(IntEnum):
    """Direction of the last inserts."""

    NONE = 0
    LEFT = 1
    RIGHT = 2
    SAME_REC = 3
    SAME_PAGE = 4
    NO_DIRECTION = 5


@dataclass(frozen=True, slots=True)
class IndexPageHeader:
    """The 36-byte index page header.

    Attributes:
        n_dir_slots: Number of page directory slots
        heap_top: Offset of the first unused byte of the record heap
        n_heap_raw: Heap record count, bit 15 set for the compact format
        free: Origin of the first record on the free (deleted) list, 0 if none
        garbage: Bytes held by deleted records
        last_insert: Origin of the last inserted record
        direction: Direction of the last inserts
        n_direction: Consecutive inserts in that direction
        n_recs: User records on the page
        max_trx_id: Highest transaction id to modify a record (secondary
            index leaves only)
        level: Height of the page in the tree, 0 for leaves
        index_id: Index the page belongs to
    """

    n_dir_slots: int
    heap_top: int
    n_heap_raw: int
    free: int
    garbage: int
    last_insert: int
    direction: int
    n_direction: int
    n_recs: int
    max_trx_id: int
    level: int
    index_id: int

    OFFSET: ClassVar[int] = FilHeader.SIZE
    SIZE: ClassVar[int] = 36
    FORMAT: ClassVar[str] = ">9HQHQ"

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = FilHeader.SIZE) -> IndexPageHeader:
        return cls(*struct.unpack_from(cls.FORMAT, data, offset))

    @property
    def is_compact(self) -> bool:
        return bool(self.n_heap_raw & 0x8000)

    @property
    def n_heap(self) -> int:
        """Records in the heap, including pseudo and deleted records."""
        return self.n_heap_raw & 0x7FFF


@dataclass(frozen=True, slots=True)
class FsegHeader:
    """Pointer to a file segment inode (10 bytes)."""

    space_id: SpaceId
    page_number: PageNumber
    offset: int

    SIZE: ClassVar[int] = 10

    @classmethod
    def from_bytes(cls, data: bytes, offset: int) -> FsegHeader:
        space_id, page_number, inode_offset = struct.unpack_from(">IIH", data, offset)
        return cls(SpaceId(space_id), PageNumber(page_number), inode_offset)


_DEFAULT_DECODER = RecordDecoder()


class IndexPage(Page, page_types=(PageType.INDEX, PageType.SDI, PageType.RTREE)):
    """A B-tree node page."""

    HEADER_OFFSET: ClassVar[int] = FilHeader.SIZE
    FSEG_LEAF_OFFSET: ClassVar[int] = 74
    FSEG_TOP_OFFSET: ClassVar[int] = 84
    DIRECTORY_SLOT_SIZE: ClassVar[int] = 2

    COMPACT_INFIMUM: ClassVar[int] = 99
    COMPACT_SUPREMUM: ClassVar[int] = 112
    REDUNDANT_INFIMUM: ClassVar[int] = 101
    REDUNDANT_SUPREMUM: ClassVar[int] = 116

    def _check(self) -> None:
        header = self.page_header
        directory_start = self.size - FilTrailer.SIZE
        lowest_slot = directory_start - header.n_dir_slots * self.DIRECTORY_SLOT_SIZE
        if header.n_dir_slots < 2:
            raise self.malformed(f"Page directory has {header.n_dir_slots} slots", self.HEADER_OFFSET)
        if lowest_slot < self.supremum_offset + 8:
            raise self.malformed(
                f"Page directory of {header.n_dir_slots} slots overlaps the records",
                self.HEADER_OFFSET,
            )
        if not self.supremum_offset + 8 <= header.heap_top <= lowest_slot:
            raise self.malformed(f"Heap top {header.heap_top} out of range", self.HEADER_OFFSET + 2)
        if header.n_recs + 2 > header.n_heap:
            raise self.malformed(
                f"Record count {header.n_recs} exceeds heap size {header.n_heap}",
                self.HEADER_OFFSET + 16,
            )

    # Header

    @cached_property
    def page_header(self) -> IndexPageHeader:
        return IndexPageHeader.from_bytes(self.data)

    @property
    def is_compact(self) -> bool:
        return self.page_header.is_compact

    @property
    def row_format(self) -> RowFormat:
        return RowFormat.COMPACT if self.is_compact else RowFormat.REDUNDANT

    @property
    def level(self) -> int:
        return self.page_header.level

    @property
    def is_leaf(self) -> bool:
        return self.level == 0

    @property
    def is_root(self) -> bool:
        return self.prev is None and self.next is None

    @property
    def index_id(self) -> int:
        return self.page_header.index_id

    @property
    def n_recs(self) -> int:
        return self.page_header.n_recs

    @property
    def heap_top(self) -> int:
        return self.page_header.heap_top

    @property
    def garbage(self) -> int:
        return self.page_header.garbage

    @property
    def fseg_leaf(self) -> FsegHeader:
        """Leaf segment of the index (meaningful on the root page)."""
        return FsegHeader.from_bytes(self.data, self.FSEG_LEAF_OFFSET)

    @property
    def fseg_top(self) -> FsegHeader:
        """Non-leaf segment of the index (meaningful on the root page)."""
        return FsegHeader.from_bytes(self.data, self.FSEG_TOP_OFFSET)

    # Space accounting

    @property
    def directory_size(self) -> int:
        return self.page_header.n_dir_slots * self.DIRECTORY_SLOT_SIZE

    @property
    def free_space(self) -> int:
        """Unused bytes between the heap and the directory, plus garbage."""
        unused = self.size - 8 - self.directory_size - self.heap_top
        return unused + self.garbage

    @property
    def used_space(self) -> int:
        return self.size - self.free_space

    # Directory

    @property
    def infimum_offset(self) -> int:
        return self.COMPACT_INFIMUM if self.is_compact else self.REDUNDANT_INFIMUM

    @property
    def supremum_offset(self) -> int:
        return self.COMPACT_SUPREMUM if self.is_compact else self.REDUNDANT_SUPREMUM

    @cached_property
    def directory(self) -> tuple[int, ...]:
        """Record origins held by the directory slots, infimum first."""
        n_slots = self.page_header.n_dir_slots
        first = self.size - 8 - self.DIRECTORY_SLOT_SIZE
        return tuple(
            struct.unpack_from(">H", self.data, first - i * self.DIRECTORY_SLOT_SIZE)[0]
            for i in range(n_slots)
        )

    def directory_records(
        self,
        shape: RecordShape | None = None,
        decoder: RecordDecoder | None = None,
    ) -> list[Record]:
        return [self.record_at(offset, shape, decoder) for offset in self.directory]

    # Records

    def record_at(
        self,
        offset: int,
        shape: RecordShape | None = None,
        decoder: RecordDecoder | None = None,
    ) -> Record:
        """Decode the record whose origin is offset."""
        return (decoder or _DEFAULT_DECODER).parse(self, offset, shape)

    def infimum(self) -> Record:
        return self.record_at(self.infimum_offset)

    def supremum(self) -> Record:
        return self.record_at(self.supremum_offset)

    def _follow(self, record: Record) -> int:
        """Validated origin of the record after record."""
        next_offset = record.next_offset
        if next_offset is None:
            raise CorruptChainError(
                "Record chain ends before supremum",
                page_number=self.page_number,
                offset=record.offset,
            )
        if not self.infimum_offset <= next_offset < self.size - 8 - self.directory_size:
            raise CorruptChainError(
                f"Next record pointer {next_offset} points outside the record heap",
                page_number=self.page_number,
                offset=record.offset,
            )
        return next_offset

    def _walk(self, shape: RecordShape | None, decoder: RecordDecoder | None) -> Iterator[Record]:
        limit = self.n_recs + 1
        record = self.infimum()
        yield record

        steps = 0
        while True:
            offset = self._follow(record)
            steps += 1
            if steps > limit:
                raise CorruptChainError(
                    f"Record chain longer than {self.n_recs} records (cycle?)",
                    page_number=self.page_number,
                    offset=offset,
                )
            if offset == self.supremum_offset:
                if steps != limit:
                    raise CorruptChainError(
                        f"Record chain reached supremum after {steps - 1} of "
                        f"{self.n_recs} records",
                        page_number=self.page_number,
                        offset=record.offset,
                    )
                yield self.supremum()
                return
            record = self.record_at(offset, shape, decoder)
            if not record.is_user_record:
                raise CorruptChainError(
                    "Pseudo-record found inside the record chain",
                    page_number=self.page_number,
                    offset=offset,
                )
            yield record

    def records(
        self,
        shape: RecordShape | None = None,
        strict: bool = True,
        decoder: RecordDecoder | None = None,
    ) -> ChainSequence[Record]:
        """Every record from infimum to supremum inclusive, in key order.

        The sequence is restartable. A broken chain ends the walk; the error
        is kept on the sequence and raised only when strict.
        """
        return ChainSequence(lambda: self._walk(shape, decoder), strict=strict)

    def user_records(
        self,
        shape: RecordShape | None = None,
        strict: bool = True,
        decoder: RecordDecoder | None = None,
    ) -> ChainSequence[Record]:
        """User records only, in key order."""

        def walk() -> Iterator[Record]:
            for record in self._walk(shape, decoder):
                if record.is_user_record:
                    yield record

        return ChainSequence(walk, strict=strict)

    @property
    def user_record_count(self) -> int:
        return self.n_recs

    def min_record(
        self, shape: RecordShape | None = None, decoder: RecordDecoder | None = None
    ) -> Record | None:
        """First user record, None on an empty page."""
        offset = self._follow(self.infimum())
        if offset == self.supremum_offset:
            return None
        return self.record_at(offset, shape, decoder)

    def max_record(
        self, shape: RecordShape | None = None, decoder: RecordDecoder | None = None
    ) -> Record | None:
        """Last user record, None on an empty page."""
        last = None
        for record in self.user_records(shape, decoder=decoder):
            last = record
        return last

    def free_records(
        self,
        shape: RecordShape | None = None,
        strict: bool = True,
        decoder: RecordDecoder | None = None,
    ) -> ChainSequence[Record]:
        """Records on the page's free (deleted, reusable) list."""

        def walk() -> Iterator[Record]:
            offset = self.page_header.free
            limit = self.page_header.n_heap
            steps = 0
            while offset:
                steps += 1
                if steps > limit:
                    raise CorruptChainError(
                        "Free record list longer than the heap",
                        page_number=self.page_number,
                        offset=offset,
                    )
                if not self.supremum_offset < offset < self.heap_top:
                    raise CorruptChainError(
                        f"Free list pointer {offset} outside the record heap",
                        page_number=self.page_number,
                        offset=offset,
                    )
                record = self.record_at(offset, shape, decoder)
                yield record
                offset = record.next_offset or 0

        return ChainSequence(walk, strict=strict)

    # Search

    def compare(
        self, record: Record, key: Sequence[Any], encoding: str = DEFAULT_ENCODING
    ) -> int:
        """Order of a record relative to a search key.

        Infimum and the min-rec flagged leftmost node pointer sort below
        every key; supremum sorts above every key. Text key columns without
        a charset of their own compare against bytes in encoding.
        """
        if record.is_infimum:
            return -1
        if record.is_supremum:
            return 1
        if record.min_rec and not self.is_leaf:
            return -1
        encodings = [f.column.charset or encoding for f in record.key_fields]
        return compare_keys(record.key, key, encodings)

    def search(
        self,
        key: Sequence[Any],
        shape: RecordShape,
        decoder: RecordDecoder | None = None,
    ) -> Record | None:
        """Find a key on this page.

        A binary search over the directory slots finds the group that can
        hold the key, then a linear scan walks that group.

        Returns:
            On a leaf page the record whose key equals key, or None. On a
            node-pointer page the last record whose key is <= key (the
            leftmost record when key sorts below every record), or None on
            an empty page.
        """
        decoder = decoder or _DEFAULT_DECODER
        floor = self.floor(key, shape, decoder)
        if self.is_leaf:
            if floor is not None and self.compare(floor, key, decoder.encoding) == 0:
                return floor
            return None
        if floor is None:
            return self.min_record(shape, decoder)
        return floor

    def floor(
        self,
        key: Sequence[Any],
        shape: RecordShape,
        decoder: RecordDecoder | None = None,
    ) -> Record | None:
        """Last user record whose key is <= key, None if there is none."""
        encoding = (decoder or _DEFAULT_DECODER).encoding
        slots = self.directory
        low, high = 0, len(slots) - 1
        while high - low > 1:
            middle = (low + high) // 2
            if self.compare(self.record_at(slots[middle], shape, decoder), key, encoding) <= 0:
                low = middle
            else:
                high = middle

        record = self.record_at(slots[low], shape, decoder)
        best = record if record.is_user_record else None
        for _ in range(self.n_recs + 1):
            if record.is_supremum:
                break
            following = self.record_at(self._follow(record), shape, decoder)
            if self.compare(following, key, encoding) > 0:
                break
            record = following
            best = record
        return best
