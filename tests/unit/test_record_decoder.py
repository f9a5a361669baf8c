"""Unit tests for RecordDecoder."""

from __future__ import annotations

import pytest

from builders import (
    COMPACT_SUPREMUM,
    REDUNDANT_SUPREMUM,
    SPACE_ID,
    PageMap,
    Rec,
    extern_ref,
    index_page,
    node_ptr,
    people_shape,
    person,
    record_origins,
)
from innodb_reader.domain.entities.index_page import IndexPage
from innodb_reader.domain.entities.page import Page
from innodb_reader.domain.entities.record import Record, RecordKind, RollPointer, RowFormat
from innodb_reader.domain.errors import ShapeMismatchError
from innodb_reader.domain.services.btree_index import BTreeIndex
from innodb_reader.domain.services.record_decoder import RecordDecoder, node_key_columns
from innodb_reader.domain.value_objects import (
    ColumnDescriptor,
    FieldRole,
    RecordDescriber,
    TypeClass,
)


class TwoColumnShape:
    """Hand-written shape: id INT (key) and name VARCHAR(255), no system fields."""

    def __init__(self) -> None:
        self._fields = (
            ColumnDescriptor("id", TypeClass.INT, length=4, role=FieldRole.KEY),
            ColumnDescriptor("name", TypeClass.VARCHAR, length=255),
        )

    @property
    def field_count(self) -> int:
        return len(self._fields)

    @property
    def key_count(self) -> int:
        return 1

    def field_at(self, index: int) -> ColumnDescriptor:
        return self._fields[index]


class PlainShape:
    """Caller-built shape whose descriptors carry no roles."""

    def __init__(self, key_count: int, fields: tuple[ColumnDescriptor, ...]) -> None:
        self._key_count = key_count
        self._fields = fields

    @property
    def field_count(self) -> int:
        return len(self._fields)

    @property
    def key_count(self) -> int:
        return self._key_count

    def field_at(self, index: int) -> ColumnDescriptor:
        return self._fields[index]


def _plain_shape() -> PlainShape:
    return PlainShape(
        key_count=1,
        fields=(
            ColumnDescriptor("id", TypeClass.INT, length=4),
            ColumnDescriptor("name", TypeClass.VARCHAR, length=255),
        ),
    )


def _parse(raw: bytes) -> IndexPage:
    page = Page.parse(raw)
    assert isinstance(page, IndexPage)
    return page


def _blob_shape() -> RecordDescriber:
    return RecordDescriber.clustered(
        key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
        row=[ColumnDescriptor("doc", TypeClass.BLOB, nullable=True)],
    )


ROLL_POINTER = RollPointer(is_insert=True, rseg_id=2, undo_page=312, undo_offset=272)


@pytest.mark.unit
class TestTwoRecordPage:
    """A leaf page of two records decoded with a two-column shape."""

    @pytest.fixture
    def page(self) -> IndexPage:
        shape = TwoColumnShape()
        return _parse(index_page(4, shape, [Rec([1, "alice"]), Rec([2, "bob"])]))

    def test_records_in_key_order(self, page: IndexPage) -> None:
        """Records come back in ascending id order with their values."""
        records = page.user_records(TwoColumnShape()).to_list()

        assert [r.values() for r in records] == [
            {"id": 1, "name": "alice"},
            {"id": 2, "name": "bob"},
        ]
        assert [r.key for r in records] == [(1,), (2,)]

    def test_raw_field_bytes(self, page: IndexPage) -> None:
        """Stored bytes match the on-disk encoding computed by hand."""
        first = page.user_records(TwoColumnShape()).first()
        assert first.field("id").raw == b"\x80\x00\x00\x01"
        assert first.field("name").raw == b"alice"
        assert first.length == 4 + 5

    def test_field_offsets(self, page: IndexPage) -> None:
        first = page.user_records(TwoColumnShape()).first()
        assert first.field("id").offset == first.offset
        assert first.field("name").offset == first.offset + 4

    def test_headers(self, page: IndexPage) -> None:
        """Heap numbers follow insertion; the last record links to supremum."""
        first, second = page.user_records(TwoColumnShape())
        assert (first.heap_no, second.heap_no) == (2, 3)
        assert first.kind is RecordKind.CONVENTIONAL
        assert first.row_format is RowFormat.COMPACT
        assert second.next_offset == COMPACT_SUPREMUM


@pytest.mark.unit
class TestCompactRecords:
    """Tests for the compact row format."""

    def test_clustered_system_fields(self) -> None:
        page = _parse(index_page(4, people_shape(), [person(7, "carol", trx_id=1843)]))
        record = page.user_records(people_shape()).first()

        assert record.transaction_id == 1843
        assert record.roll_pointer == ROLL_POINTER
        assert record.row == {"name": "carol"}
        assert record.key == (7,)

    def test_null_field(self) -> None:
        """A set null bit yields None and consumes no bytes."""
        page = _parse(index_page(4, people_shape(), [person(1, None), person(2, "x")]))
        first, second = page.user_records(people_shape())

        assert first.field("name").is_null
        assert first.field("name").value is None
        assert second.row == {"name": "x"}

    def test_negative_key(self) -> None:
        page = _parse(index_page(4, people_shape(), [person(-42, "neg")]))
        assert page.user_records(people_shape()).first().key == (-42,)

    def test_two_byte_length(self) -> None:
        """Long values in big columns use the two-byte length form."""
        shape = RecordDescriber.clustered(
            key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
            row=[ColumnDescriptor("body", TypeClass.VARCHAR, length=2000)],
        )
        text = "x" * 300 + "y" * 200
        page = _parse(index_page(4, shape, [Rec([1, 1000, ROLL_POINTER, text])]))
        assert page.user_records(shape).first().row == {"body": text}

    def test_external_field(self) -> None:
        """An external field keeps its inline prefix and exposes the pointer."""
        value = b"inline prefix" + extern_ref(40, 70000)
        rec = Rec([1, 1000, ROLL_POINTER, value], extern=frozenset({3}))
        page = _parse(index_page(4, _blob_shape(), [rec]))
        field = page.user_records(_blob_shape()).first().field("doc")

        assert field.is_external
        assert not field.is_null
        assert field.value == b"inline prefix"
        assert field.extern.page_number == 40
        assert field.extern.length == 70000
        assert field.extern.space_id == SPACE_ID
        assert field.extern.is_owner

    def test_external_field_too_short(self) -> None:
        rec = Rec([1, 1000, ROLL_POINTER, b"short"], extern=frozenset({3}))
        page = _parse(index_page(4, _blob_shape(), [rec]))
        with pytest.raises(ShapeMismatchError):
            page.user_records(_blob_shape()).to_list()

    def test_value_types(self) -> None:
        shape = RecordDescriber.clustered(
            key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
            row=[
                ColumnDescriptor("ratio", TypeClass.FLOAT),
                ColumnDescriptor("amount", TypeClass.DOUBLE),
                ColumnDescriptor("code", TypeClass.CHAR, length=8, charset="ascii"),
                ColumnDescriptor("counter", TypeClass.UINT, length=8),
            ],
        )
        rec = Rec([1, 1000, ROLL_POINTER, 0.5, -2.25, "AB", 2**63 + 5])
        record = _parse(index_page(4, shape, [rec])).user_records(shape).first()

        assert record.row == {"ratio": 0.5, "amount": -2.25, "code": "AB", "counter": 2**63 + 5}

    def test_deleted_flag(self) -> None:
        page = _parse(index_page(4, people_shape(), [person(1, "a", info_bits=0x2)]))
        assert page.user_records(people_shape()).first().deleted

    def test_length_over_maximum(self) -> None:
        """A stored length above the shape's maximum is a shape mismatch."""
        narrow = RecordDescriber.clustered(
            key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
            row=[ColumnDescriptor("name", TypeClass.VARCHAR, nullable=True, length=3)],
        )
        page = _parse(index_page(4, people_shape(), [person(1, "too long")]))
        with pytest.raises(ShapeMismatchError) as excinfo:
            page.user_records(narrow).to_list()
        assert excinfo.value.page_number == 4

    def test_header_only_without_shape(self) -> None:
        page = _parse(index_page(4, people_shape(), [person(1, "a")]))
        record = page.record_at(record_origins(page.data)[0])
        assert record.fields == ()
        assert record.is_user_record


@pytest.mark.unit
class TestNodePointers:
    """Tests for node-pointer records."""

    def test_child_page_and_key(self) -> None:
        page = _parse(
            index_page(3, people_shape(), [node_ptr([1], 4, min_rec=True), node_ptr([5], 5)], level=1)
        )
        first, second = page.user_records(people_shape())

        assert first.is_node_pointer
        assert first.min_rec
        assert first.child_page_number == 4
        assert second.key == (5,)
        assert second.child_page_number == 5
        assert second.transaction_id is None

    def test_secondary_node_pointer_carries_all_fields(self) -> None:
        """Secondary node pointers hold the key and primary key before the child."""
        shape = RecordDescriber.secondary(
            key=[ColumnDescriptor("email", TypeClass.VARCHAR, length=100)],
            primary_key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
        )
        assert [c.name for c in node_key_columns(shape)] == ["email", "id"]

        page = _parse(index_page(3, shape, [node_ptr(["a@example.com", 9], 12)], level=1))
        record = page.user_records(shape).first()
        assert record.values() == {"email": "a@example.com", "id": 9, "CHILD_PAGE_NUMBER": 12}
        assert record.key == ("a@example.com", 9)
        assert record.row == {}
        assert record.child_page_number == 12


@pytest.mark.unit
class TestRolelessShape:
    """Keys come from the shape's key width when descriptors carry no roles."""

    def test_leaf_keys(self) -> None:
        shape = _plain_shape()
        page = _parse(index_page(4, shape, [Rec([1, "alice"]), Rec([2, "bob"])]))
        records = page.user_records(shape).to_list()

        assert [r.key for r in records] == [(1,), (2,)]
        assert [r.row for r in records] == [{"name": "alice"}, {"name": "bob"}]
        assert page.search((2,), shape) is not None
        assert page.search((3,), shape) is None

    def test_node_pointer_keys(self) -> None:
        shape = _plain_shape()
        records = [node_ptr([1], 4, min_rec=True), node_ptr([5], 5)]
        page = _parse(index_page(3, shape, records, level=1))

        assert [r.key for r in page.user_records(shape)] == [(1,), (5,)]
        assert page.search((2,), shape).child_page_number == 4
        assert page.search((9,), shape).child_page_number == 5

    def test_tree_descent(self) -> None:
        shape = _plain_shape()
        reader = PageMap(
            {
                3: index_page(3, shape, [node_ptr([1], 4, min_rec=True), node_ptr([3], 5)], level=1),
                4: index_page(4, shape, [Rec([1, "a"]), Rec([2, "b"])], next_page=5),
                5: index_page(5, shape, [Rec([3, "c"]), Rec([4, "d"])], prev=4),
            }
        )
        index = BTreeIndex(reader, 3, shape)

        assert index.search((2,)).row == {"name": "b"}
        assert index.search((4,)).row == {"name": "d"}
        assert reader.reads[-1] == 5


@pytest.mark.unit
class TestRedundantRecords:
    """Tests for the redundant row format."""

    def test_decode(self) -> None:
        raw = index_page(4, people_shape(), [person(1, "alice"), person(2, None)], compact=False)
        page = _parse(raw)
        first, second = page.user_records(people_shape())

        assert not page.is_compact
        assert first.row_format is RowFormat.REDUNDANT
        assert first.header.n_fields == 4
        assert first.header.short_offsets
        assert first.values()["name"] == "alice"
        assert second.field("name").is_null
        assert second.next_offset == REDUNDANT_SUPREMUM

    def test_null_fixed_width_keeps_bytes(self) -> None:
        """A null fixed-width field still occupies its width."""
        shape = RecordDescriber.clustered(
            key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
            row=[
                ColumnDescriptor("age", TypeClass.INT, nullable=True, length=2),
                ColumnDescriptor("city", TypeClass.VARCHAR, length=40),
            ],
        )
        raw = index_page(4, shape, [Rec([1, 1000, ROLL_POINTER, None, "Oslo"])], compact=False)
        record = _parse(raw).user_records(shape).first()

        assert record.field("age").value is None
        assert record.field("city").value == "Oslo"
        assert record.field("city").offset == record.field("age").offset + 2

    def test_two_byte_offsets(self) -> None:
        shape = RecordDescriber.clustered(
            key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
            row=[ColumnDescriptor("body", TypeClass.VARCHAR, length=1000)],
        )
        text = "z" * 400
        raw = index_page(4, shape, [Rec([1, 1000, ROLL_POINTER, text])], compact=False)
        record = _parse(raw).user_records(shape).first()

        assert not record.header.short_offsets
        assert record.row == {"body": text}

    def test_external_field(self) -> None:
        value = b"p" * 30 + extern_ref(77, 20000)
        rec = Rec([1, 1000, ROLL_POINTER, value], extern=frozenset({3}))
        raw = index_page(4, _blob_shape(), [rec], compact=False)
        field = _parse(raw).user_records(_blob_shape()).first().field("doc")

        assert field.extern.page_number == 77
        assert field.value == b"p" * 30

    def test_field_count_mismatch(self) -> None:
        """The stored field count must match the shape."""
        wider = RecordDescriber.clustered(
            key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
            row=[
                ColumnDescriptor("name", TypeClass.VARCHAR, nullable=True, length=255),
                ColumnDescriptor("extra", TypeClass.INT, length=4),
            ],
        )
        page = _parse(index_page(4, people_shape(), [person(1, "a")], compact=False))
        with pytest.raises(ShapeMismatchError):
            page.user_records(wider).to_list()

    def test_node_pointer_kind_from_level(self) -> None:
        raw = index_page(3, people_shape(), [node_ptr([1], 4, min_rec=True)], level=1, compact=False)
        record = _parse(raw).user_records(people_shape()).first()
        assert record.is_node_pointer
        assert record.child_page_number == 4


@pytest.mark.unit
class TestObserver:
    def test_called_for_each_decoded_record(self) -> None:
        """The observer sees every record decoded with a shape."""
        seen: list[Record] = []
        decoder = RecordDecoder(observer=seen.append)
        page = _parse(index_page(4, people_shape(), [person(1, "a"), person(2, "b")]))

        page.user_records(people_shape(), decoder=decoder).to_list()

        assert [r.key for r in seen] == [(1,), (2,)]

    def test_not_called_without_shape(self) -> None:
        seen: list[Record] = []
        decoder = RecordDecoder(observer=seen.append)
        page = _parse(index_page(4, people_shape(), [person(1, "a")]))

        page.records(decoder=decoder).to_list()

        assert seen == []

    def test_encoding(self) -> None:
        """The decoder's default charset applies to columns without one."""
        shape = TwoColumnShape()
        page = _parse(index_page(4, shape, [Rec([1, "é".encode("latin-1")])]))
        record = page.user_records(shape, decoder=RecordDecoder(encoding="latin-1")).first()
        assert record.field("name").value == "é"

    def test_search_by_bytes_uses_decoder_charset(self) -> None:
        """A bytes search key matches text decoded with a non-UTF-8 charset."""
        shape = PlainShape(
            key_count=1, fields=(ColumnDescriptor("code", TypeClass.VARCHAR, length=10),)
        )
        page = _parse(index_page(4, shape, [Rec([b"a"]), Rec(["é".encode("latin-1")])]))
        decoder = RecordDecoder(encoding="latin-1")

        found = page.search((b"\xe9",), shape, decoder)
        assert found is not None and found.key == ("é",)
        assert page.search((b"\xe9",), shape) is None
