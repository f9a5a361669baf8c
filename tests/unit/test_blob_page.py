"""Unit tests for overflow pages and external field resolution."""

from __future__ import annotations

import struct

import pytest

from builders import (
    PageMap,
    blob_page,
    extern_ref,
    index_page,
    inode_page,
    lob_pages,
    people_shape,
    stamp,
)
from innodb_reader.domain.entities.blob_page import (
    BlobPage,
    LobDataPage,
    LobFirstPage,
    read_external,
)
from innodb_reader.domain.entities.page import Page
from innodb_reader.domain.entities.record import ExternReference
from innodb_reader.domain.errors import CorruptChainError, MalformedPageError


def _ref(page_number: int, length: int, flags: int = 0) -> ExternReference:
    return ExternReference.from_bytes(extern_ref(page_number, length, flags=flags))


@pytest.mark.unit
class TestExternReference:
    def test_fields(self) -> None:
        ref = _ref(40, 70000)
        assert ref.page_number == 40
        assert ref.length == 70000
        assert ref.offset == 38
        assert ref.is_owner
        assert not ref.is_inherited

    def test_flags_in_length_high_byte(self) -> None:
        """Ownership flags live in the top byte and are not part of the length."""
        ref = _ref(40, 100, flags=0xC0)
        assert ref.length == 100
        assert not ref.is_owner
        assert ref.is_inherited

    def test_uses_last_twenty_bytes(self) -> None:
        ref = ExternReference.from_bytes(b"prefix" + extern_ref(9, 5))
        assert ref.page_number == 9

    def test_too_short(self) -> None:
        with pytest.raises(ValueError):
            ExternReference.from_bytes(b"\x00" * 10)


@pytest.mark.unit
class TestBlobChain:
    """Tests for pre-8.0 BLOB page chains."""

    @pytest.fixture
    def reader(self) -> PageMap:
        return PageMap({40: blob_page(40, b"hello ", next_page=41), 41: blob_page(41, b"world")})

    def test_page_fields(self, reader: PageMap) -> None:
        page = reader.page(40)
        assert isinstance(page, BlobPage)
        assert page.part_length == 6
        assert page.next_page == 41
        assert page.data_part() == b"hello "
        assert reader.page(41).next_page is None

    def test_read_whole_value(self, reader: PageMap) -> None:
        assert read_external(reader, _ref(40, 11)) == b"hello world"

    def test_stops_at_max_length(self, reader: PageMap) -> None:
        """Only the pages needed for max_length are read."""
        assert read_external(reader, _ref(40, 11), max_length=5) == b"hello"
        assert reader.reads == [40]

    def test_truncated_to_stored_length(self, reader: PageMap) -> None:
        assert read_external(reader, _ref(40, 8)) == b"hello wo"

    def test_loop(self) -> None:
        reader = PageMap(
            {40: blob_page(40, b"ab", next_page=41), 41: blob_page(41, b"cd", next_page=40)}
        )
        with pytest.raises(CorruptChainError):
            read_external(reader, _ref(40, 100))

    def test_chain_into_wrong_page_type(self) -> None:
        reader = PageMap({40: blob_page(40, b"ab", next_page=41), 41: inode_page(41)})
        with pytest.raises(MalformedPageError):
            read_external(reader, _ref(40, 100))

    def test_reference_to_wrong_page_type(self) -> None:
        reader = PageMap({40: index_page(40, people_shape())})
        with pytest.raises(MalformedPageError):
            read_external(reader, _ref(40, 10))

    def test_part_longer_than_page(self) -> None:
        raw = bytearray(blob_page(40, b"x"))
        struct.pack_into(">I", raw, 38, 20000)
        with pytest.raises(MalformedPageError):
            Page.parse(stamp(raw))


@pytest.mark.unit
class TestLob:
    """Tests for 8.0 LOB first, index and data pages."""

    VALUE = bytes(range(256)) * 12

    @pytest.fixture
    def reader(self) -> PageMap:
        return PageMap(lob_pages(50, self.VALUE, data_pages=[51, 52], first_part=1000))

    def test_first_page(self, reader: PageMap) -> None:
        first = reader.page(50)
        assert isinstance(first, LobFirstPage)
        assert first.version == 1
        assert first.data_length == 1000
        assert first.index_list.length == 3
        assert first.free_list.is_empty
        assert first.data_part() == self.VALUE[:1000]

    def test_index_entry(self, reader: PageMap) -> None:
        entry = reader.page(50).index_entry_at(96 + 60)
        assert entry.data_page == 51
        assert entry.data_length == 1036
        assert entry.lob_version == 1
        assert entry.trx_id == 77
        assert entry.prev.offset == 96

    def test_data_page(self, reader: PageMap) -> None:
        page = reader.page(52)
        assert isinstance(page, LobDataPage)
        assert page.trx_id == 77
        assert page.data_part() == self.VALUE[2036:]

    def test_read_whole_value(self, reader: PageMap) -> None:
        assert read_external(reader, _ref(50, len(self.VALUE))) == self.VALUE

    def test_max_length(self, reader: PageMap) -> None:
        assert read_external(reader, _ref(50, len(self.VALUE)), max_length=1500) == self.VALUE[:1500]
        assert 52 not in reader.reads

    def test_entry_outside_page(self, reader: PageMap) -> None:
        with pytest.raises(MalformedPageError):
            reader.page(50).index_entry_at(16380)

    def test_data_entry_pointing_at_wrong_page_type(self) -> None:
        """An index entry whose data page is not a LOB data page."""
        pages = lob_pages(50, self.VALUE, data_pages=[51, 52], first_part=1000)
        pages[51] = index_page(51, people_shape(), [])
        with pytest.raises(MalformedPageError):
            read_external(PageMap(pages), _ref(50, len(self.VALUE)))

    def test_data_entry_capped_at_page_length(self) -> None:
        """A data page shorter than its index entry yields only its own bytes."""
        pages = lob_pages(50, self.VALUE, data_pages=[51, 52], first_part=1000)
        page = bytearray(pages[52])
        struct.pack_into(">I", page, 39, 10)
        pages[52] = stamp(page)

        value = read_external(PageMap(pages), _ref(50, len(self.VALUE)))
        assert value == self.VALUE[:2046]
