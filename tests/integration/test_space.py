"""Integration tests for Space over in-memory and on-disk tablespaces."""

from __future__ import annotations

import struct
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from builders import (
    Extent,
    Rec,
    Segment,
    UndoLogSpec,
    UndoRec,
    blob_page,
    extern_ref,
    flip_bit,
    fsp_hdr_page,
    index_page,
    inode_page,
    node_ptr,
    people_shape,
    person,
    sys_page,
    tablespace_image,
    trx_sys_page,
    undo_page,
    write_tablespace,
)
from innodb_reader.adapters.outbound.file_space import MemorySpace
from innodb_reader.application.space import Space
from innodb_reader.domain.entities.index_page import IndexPage
from innodb_reader.domain.entities.record import RollPointer
from innodb_reader.domain.entities.undo_page import UndoRecordType
from innodb_reader.domain.entities.xdes import ExtentState
from innodb_reader.domain.errors import CorruptChainError, MalformedPageError
from innodb_reader.domain.value_objects import ColumnDescriptor, RecordDescriber, TypeClass
from innodb_reader.infrastructure.config import Config
from innodb_reader.infrastructure.metrics import MetricsRegistry


ROLL_POINTER = RollPointer(is_insert=True, rseg_id=2, undo_page=312, undo_offset=272)


def _docs_shape() -> RecordDescriber:
    return RecordDescriber.clustered(
        key=[ColumnDescriptor("id", TypeClass.INT, length=4)],
        row=[ColumnDescriptor("doc", TypeClass.TEXT, nullable=True)],
    )


def _table_pages(**replace: bytes) -> dict[int, bytes]:
    """A file-per-table tablespace.

    Page 0 describes extent 0 (fragment pages) and extent 1 (owned by the
    leaf segment). Page 2 holds the index's two segment inodes. The
    clustered index has root 3 over leaves 4 and 5; page 8 is a second
    index whose only record points at the BLOB chain on pages 9 and 10.
    """
    shape = people_shape()
    docs = _docs_shape()
    extern_value = b"head:" + extern_ref(9, 11)
    pages = {
        0: fsp_hdr_page(
            size=128,
            extents=[
                Extent(ExtentState.FREE_FRAG, used=range(11)),
                Extent(ExtentState.FSEG, fseg_id=2, used=range(64)),
            ],
            extent_lists=[[1]],
            inodes_full=[2],
        ),
        2: inode_page(2, [Segment(1, fragments=[3]), Segment(2, fragments=[4, 5], full=[1])]),
        3: index_page(
            3,
            shape,
            [node_ptr([1], 4, min_rec=True), node_ptr([4], 5)],
            level=1,
        ),
        4: index_page(4, shape, [person(i, f"p{i}") for i in (1, 2, 3)], next_page=5),
        5: index_page(5, shape, [person(i, f"p{i}") for i in (4, 5, 6)], prev=4),
        8: index_page(
            8,
            docs,
            [
                Rec([1, 1000, ROLL_POINTER, "short"]),
                Rec([2, 1000, ROLL_POINTER, extern_value], extern=frozenset({3})),
            ],
            index_id=146,
        ),
        9: blob_page(9, b"hello ", next_page=10),
        10: blob_page(10, b"world"),
    }
    pages.update({int(k.lstrip("p")): v for k, v in replace.items()})
    return pages


def _system_pages() -> dict[int, bytes]:
    """A system tablespace with TRX_SYS, a rollback segment, the
    dictionary header and one undo segment on page 10."""
    rseg_slots = [0xFFFFFFFF] * 1024
    rseg_slots[0] = 10
    rseg_body = (
        struct.pack(">II", 0xFFFFFFFE, 0)
        + bytes(16)
        + bytes(10)
        + struct.pack(">1024I", *rseg_slots)
    )
    dict_body = (
        struct.pack(">QQQ", 512, 1066, 2100)
        + struct.pack(">7I", 30, 0, 8, 9, 10, 11, 12)
        + bytes(4)
        + struct.pack(">IIH", 0, 2, 242)
    )
    insert = UndoRec(UndoRecordType.INSERT, 0, 1066, body=b"\x04\x80\x00\x00\x01")
    update = UndoRec(
        UndoRecordType.UPDATE_EXISTING, 1, 1066, trx_id=1800, roll_pointer=ROLL_POINTER.to_int()
    )
    return {
        0: fsp_hdr_page(size=16, space_id=0),
        5: trx_sys_page(1843, rsegs=[(0, 6)]),
        6: sys_page(6, rseg_body),
        7: sys_page(7, dict_body),
        10: undo_page(10, logs=[UndoLogSpec(1843, [insert, update])]),
    }


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry(auto_describe=True)


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsRegistry:
    return MetricsRegistry(registry=registry)


def _space(pages: dict[int, bytes], metrics: MetricsRegistry, config: Config, **kwargs) -> Space:
    return Space(MemorySpace(tablespace_image(pages)), metrics=metrics, config=config, **kwargs)


def _sample(registry: CollectorRegistry, name: str, **labels: str) -> float:
    return registry.get_sample_value(name, labels) or 0.0


@pytest.mark.integration
class TestSpacePages:
    """Tests for page reads through a Space."""

    def test_open_file(self, temp_dir: Path, metrics: MetricsRegistry, test_config: Config) -> None:
        path = write_tablespace(temp_dir / "people.ibd", _table_pages())
        with Space.open(path, metrics=metrics, config=test_config) as space:
            assert space.page_size == 16384
            assert space.page_count == 11
            assert space.space_id == 23
            assert space.fsp_header.size == 128
            assert isinstance(space.page(4), IndexPage)

    def test_each_page(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        pages = list(space.each_page())

        assert len(pages) == 11
        assert [p.type_name for p in pages[:3]] == ["FSP_HDR", "ALLOCATED", "INODE"]

    def test_pages_counted(
        self, registry: CollectorRegistry, metrics: MetricsRegistry, test_config: Config
    ) -> None:
        space = _space(_table_pages(), metrics, test_config)
        space.page(4)
        space.page(5)
        assert _sample(registry, "innodb_pages_read_total", page_type="INDEX") == 2

    def test_checksum_mismatch_counted(
        self, registry: CollectorRegistry, metrics: MetricsRegistry, test_config: Config
    ) -> None:
        """A damaged page is still returned and its records still decode."""
        space = _space(_table_pages(p4=flip_bit(_table_pages()[4], 9000)), metrics, test_config)
        page = space.index_page(4)

        assert not page.checksum.valid
        assert [r.key for r in page.user_records(people_shape())] == [(1,), (2,), (3,)]
        assert _sample(registry, "innodb_checksum_mismatches_total", algorithm="detect") == 1

    def test_checksum_not_verified(
        self, registry: CollectorRegistry, metrics: MetricsRegistry, test_config: Config
    ) -> None:
        space = _space(
            _table_pages(p4=flip_bit(_table_pages()[4], 9000)),
            metrics,
            test_config,
            verify_checksum=False,
        )
        assert space.page(4).checksum is None
        assert _sample(registry, "innodb_checksum_mismatches_total", algorithm="detect") == 0

    def test_page_number_mismatch(self, metrics: MetricsRegistry, test_config: Config) -> None:
        """A page stored under the wrong number is returned as stored."""
        space = _space(_table_pages(p6=_table_pages()[4]), metrics, test_config)
        assert space.page(6).page_number == 4

    def test_wrong_page_type(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        with pytest.raises(MalformedPageError):
            space.index_page(2)

    def test_page_outside_space(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        with pytest.raises(MalformedPageError):
            space.page(11)


@pytest.mark.integration
class TestSpaceManagement:
    """Tests for extent descriptors and segment inodes."""

    def test_each_xdes(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        entries = list(space.each_xdes())

        assert [e.start_page for e in entries] == [0, 64]
        assert entries[0].extent_state is ExtentState.FREE_FRAG
        assert entries[1].fseg_id == 2

    def test_xdes_for_page(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        assert space.xdes_for_page(70).start_page == 64
        assert space.xdes_for_page(3).start_page == 0

    def test_inodes(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)

        assert [p.page_number for p in space.each_inode_page()] == [2]
        inodes = list(space.each_inode())
        assert [i.fseg_id for i in inodes] == [1, 2]
        assert all(i.magic_valid for i in inodes)

    def test_segment_extents(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        leaf_segment = list(space.each_inode())[1]

        assert [e.start_page for e in space.extents(leaf_segment)] == [64]
        assert leaf_segment.page_count(space) == 2 + 64

    def test_inode_from_fseg_header(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        assert space.inode(2, 50 + 192).fseg_id == 2


@pytest.mark.integration
class TestSpaceIndex:
    """Tests for index traversal through a Space."""

    def test_search(
        self, registry: CollectorRegistry, metrics: MetricsRegistry, test_config: Config
    ) -> None:
        space = _space(_table_pages(), metrics, test_config)
        index = space.index(3, people_shape())

        assert index.height == 2
        assert index.search((5,)).row == {"name": "p5"}
        assert index.search((7,)) is None
        assert _sample(registry, "innodb_btree_descents_total") == 2
        assert _sample(registry, "innodb_records_decoded_total", row_format="compact") > 0

    def test_each_record(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        index = space.index(3, people_shape())

        assert [r.key for r in index.each_record()] == [(i,) for i in range(1, 7)]
        assert [p.page_number for p in index.each_leaf_page()] == [4, 5]

    def test_records_of_one_page(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        assert [r.row["name"] for r in space.records(5, people_shape())] == ["p4", "p5", "p6"]

    def test_leaf_cycle_strict(
        self, registry: CollectorRegistry, metrics: MetricsRegistry, test_config: Config
    ) -> None:
        looped = index_page(
            5, people_shape(), [person(i, f"p{i}") for i in (4, 5, 6)], prev=4, next_page=4
        )
        space = _space(_table_pages(p5=looped), metrics, test_config)

        with pytest.raises(CorruptChainError):
            space.index(3, people_shape()).each_record().to_list()
        assert _sample(registry, "innodb_chain_errors_total", kind="index") == 1

    def test_leaf_cycle_lenient(
        self, registry: CollectorRegistry, metrics: MetricsRegistry, test_config: Config
    ) -> None:
        """A lenient space keeps the records read before the loop."""
        looped = index_page(
            5, people_shape(), [person(i, f"p{i}") for i in (4, 5, 6)], prev=4, next_page=4
        )
        space = _space(_table_pages(p5=looped), metrics, test_config, strict=False)
        records = space.index(3, people_shape()).each_record()

        assert [r.key for r in records] == [(i,) for i in range(1, 7)]
        assert records.failed
        assert _sample(registry, "innodb_chain_errors_total", kind="index") == 1


@pytest.mark.integration
class TestSpaceExternalFields:
    """Tests for resolving externally stored fields."""

    def test_field_value(
        self, registry: CollectorRegistry, metrics: MetricsRegistry, test_config: Config
    ) -> None:
        space = _space(_table_pages(), metrics, test_config)
        short, long = space.records(8, _docs_shape()).to_list()

        assert space.field_value(short, "doc") == "short"
        assert space.field_value(long, "doc") == "head:hello world"
        assert _sample(registry, "innodb_external_pages_read_total") == 2

    def test_read_external_prefix(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        record = space.records(8, _docs_shape()).to_list()[1]

        assert space.read_external(record.field("doc").extern, max_length=3) == b"hel"

    def test_broken_chain(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(p10=blob_page(10, b"wor", next_page=9)), metrics, test_config)
        record = space.records(8, _docs_shape()).to_list()[1]

        with pytest.raises(CorruptChainError):
            space.field_value(record, "doc")


@pytest.mark.integration
class TestSystemSpace:
    """Tests for the system tablespace pages and undo logs."""

    def test_trx_sys(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_system_pages(), metrics, test_config)
        trx_sys = space.trx_sys()

        assert trx_sys.trx_id_store == 1843
        assert [(s.space_id, s.page_number) for s in trx_sys.rseg_slots()] == [(0, 6)]

    def test_rollback_segment_to_undo(self, metrics: MetricsRegistry, test_config: Config) -> None:
        """Follow TRX_SYS to the rollback segment and on to its undo log."""
        space = _space(_system_pages(), metrics, test_config)
        slot = space.trx_sys().rseg_slots()[0]
        rseg = space.page(slot.page_number).rseg_header

        ((_, undo_page_number),) = rseg.used_slots()
        log = space.undo_log(undo_page_number)

        assert log.header.trx_id == 1843
        assert [r.record_type for r in log.records()] == [
            UndoRecordType.INSERT,
            UndoRecordType.UPDATE_EXISTING,
        ]
        assert log.records().to_list()[1].roll_pointer == ROLL_POINTER

    def test_dict_header(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_system_pages(), metrics, test_config)
        header = space.dict_header()

        assert header.max_table_id == 1066
        assert header.sys_indexes_root == 11

    def test_dict_header_missing(self, metrics: MetricsRegistry, test_config: Config) -> None:
        space = _space(_table_pages(), metrics, test_config)
        with pytest.raises(MalformedPageError):
            space.dict_header()
