"""Unit tests for BTreeIndex traversal and search."""

from __future__ import annotations

import pytest

from builders import PageMap, blob_page, index_page, node_ptr, people_shape, person
from innodb_reader.domain.entities.index_page import IndexPage
from innodb_reader.domain.errors import (
    CorruptChainError,
    InnodbReaderError,
    MalformedPageError,
)
from innodb_reader.domain.services.btree_index import BTreeIndex


ROOT = 3


def _leaf(page_number: int, ids, prev=None, next_page=None, **kwargs) -> bytes:
    return index_page(
        page_number,
        people_shape(),
        [person(i, f"p{i}") for i in ids],
        prev=prev,
        next_page=next_page,
        **kwargs,
    )


def _tree(**replace: bytes) -> PageMap:
    """Root 3 over leaves 4 (ids 1-3), 5 (4-6) and 6 (7-9)."""
    pages = {
        ROOT: index_page(
            ROOT,
            people_shape(),
            [node_ptr([1], 4, min_rec=True), node_ptr([4], 5), node_ptr([7], 6)],
            level=1,
        ),
        4: _leaf(4, [1, 2, 3], next_page=5),
        5: _leaf(5, [4, 5, 6], prev=4, next_page=6),
        6: _leaf(6, [7, 8, 9], prev=5),
    }
    pages.update({int(k.lstrip("p")): v for k, v in replace.items()})
    return PageMap(pages)


def _index(reader: PageMap, **kwargs) -> BTreeIndex:
    return BTreeIndex(reader, ROOT, people_shape(), **kwargs)


@pytest.mark.unit
class TestLeafChain:
    """Tests for leaf-level page traversal."""

    def test_each_leaf_page_once_in_order(self) -> None:
        """Three linked leaves are visited in order exactly once."""
        pages = _index(_tree()).each_leaf_page().to_list()
        assert [p.page_number for p in pages] == [4, 5, 6]

    def test_cycle_raises(self) -> None:
        """The last leaf linking back to the first is a chain error, not a loop."""
        reader = _tree(p6=_leaf(6, [7, 8, 9], prev=5, next_page=4))
        with pytest.raises(CorruptChainError):
            _index(reader).each_leaf_page().to_list()

    def test_cycle_lenient_keeps_partial_result(self) -> None:
        reader = _tree(p6=_leaf(6, [7, 8, 9], prev=5, next_page=4))
        pages = _index(reader, strict=False).each_leaf_page()

        assert [p.page_number for p in pages] == [4, 5, 6]
        assert pages.failed

    def test_prev_mismatch(self) -> None:
        """A next link whose target does not link back is a chain error."""
        reader = _tree(p5=_leaf(5, [4, 5, 6], prev=99, next_page=6))
        with pytest.raises(CorruptChainError):
            _index(reader).each_leaf_page().to_list()

    def test_level_mismatch_in_chain(self) -> None:
        reader = _tree(p6=index_page(6, people_shape(), [node_ptr([7], 4)], prev=5, level=1))
        with pytest.raises(CorruptChainError):
            _index(reader).each_leaf_page().to_list()

    def test_chain_error_hook(self) -> None:
        errors: list[InnodbReaderError] = []
        reader = _tree(p6=_leaf(6, [7, 8, 9], prev=5, next_page=4))
        _index(reader, strict=False, on_chain_error=errors.append).each_leaf_page().to_list()

        assert len(errors) == 1
        assert isinstance(errors[0], CorruptChainError)

    def test_level_one(self) -> None:
        pages = _index(_tree()).each_page_at_level(1).to_list()
        assert [p.page_number for p in pages] == [ROOT]


@pytest.mark.unit
class TestRecords:
    """Tests for whole-index record iteration."""

    def test_each_record(self) -> None:
        records = _index(_tree()).each_record()
        assert [r.key for r in records] == [(i,) for i in range(1, 10)]

    def test_each_record_restartable(self) -> None:
        records = _index(_tree()).each_record()
        assert records.to_list() == records.to_list()

    def test_partial_records_on_broken_chain(self) -> None:
        """A lenient walk returns the records read before the failure."""
        reader = _tree(p5=_leaf(5, [4, 5, 6], prev=99, next_page=6))
        records = _index(reader, strict=False).each_record()

        assert [r.key for r in records] == [(1,), (2,), (3,)]
        assert isinstance(records.error, CorruptChainError)


@pytest.mark.unit
class TestSearch:
    """Tests for root-to-leaf descent."""

    @pytest.mark.parametrize("key", range(1, 10))
    def test_found(self, key: int) -> None:
        record = _index(_tree()).search((key,))
        assert record.key == (key,)
        assert record.row == {"name": f"p{key}"}

    @pytest.mark.parametrize("key", [0, 10, -5])
    def test_missing(self, key: int) -> None:
        assert _index(_tree()).search((key,)) is None

    def test_reads_one_page_per_level(self) -> None:
        """A search reads the root and the leaf and nothing else."""
        reader = _tree()
        _index(reader).search((5,))
        assert reader.reads == [ROOT, 5]

    def test_descend_to_leaf(self) -> None:
        index = _index(_tree())
        assert index.descend_to_leaf((0,)).page_number == 4
        assert index.descend_to_leaf((5,)).page_number == 5
        assert index.descend_to_leaf((100,)).page_number == 6

    def test_descend_boundary(self) -> None:
        index = _index(_tree())
        assert index.descend((100,)).key == (9,)
        assert index.descend((0,)).key == (1,)
        assert index.descend((6,)).key == (6,)

    def test_descent_hook(self) -> None:
        reached: list[IndexPage] = []
        _index(_tree(), on_descent=reached.append).search((8,))
        assert [p.page_number for p in reached] == [6]

    def test_child_at_wrong_level(self) -> None:
        reader = _tree(p5=index_page(5, people_shape(), [node_ptr([4], 6, min_rec=True)], level=1))
        with pytest.raises(CorruptChainError):
            _index(reader).search((5,))

    def test_child_of_other_index(self) -> None:
        reader = _tree(p5=_leaf(5, [4, 5, 6], prev=4, next_page=6, index_id=999))
        with pytest.raises(CorruptChainError):
            _index(reader).search((5,))

    def test_child_not_an_index_page(self) -> None:
        reader = _tree(p5=blob_page(5, b"not an index"))
        with pytest.raises(MalformedPageError):
            _index(reader).search((5,))

    def test_empty_node_page(self) -> None:
        reader = _tree(p3=index_page(ROOT, people_shape(), [], level=1))
        with pytest.raises(CorruptChainError):
            _index(reader).search((1,))

    def test_root_only_tree(self) -> None:
        reader = PageMap({ROOT: _leaf(ROOT, [1, 2])})
        index = _index(reader)

        assert index.height == 1
        assert index.search((2,)).key == (2,)
        assert [p.page_number for p in index.each_leaf_page()] == [ROOT]

    def test_empty_tree(self) -> None:
        index = _index(PageMap({ROOT: _leaf(ROOT, [])}))
        assert index.descend((1,)) is None
        assert index.each_record().to_list() == []


@pytest.mark.unit
class TestLevels:
    def test_height(self) -> None:
        assert _index(_tree()).height == 2

    def test_min_page_at_level(self) -> None:
        index = _index(_tree())
        assert index.min_page_at_level(1).page_number == ROOT
        assert index.min_page_at_level(0).page_number == 4

    @pytest.mark.parametrize("level", [-1, 2])
    def test_level_out_of_range(self, level: int) -> None:
        with pytest.raises(ValueError):
            _index(_tree()).min_page_at_level(level)

    def test_root_not_an_index_page(self) -> None:
        reader = PageMap({ROOT: blob_page(ROOT, b"x")})
        with pytest.raises(MalformedPageError):
            _index(reader).root()
