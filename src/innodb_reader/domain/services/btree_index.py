"""B-tree index traversal over index pages.

An index is a tree of INDEX pages sharing one index id: a root page,
internal levels of node-pointer records (key fields plus a child page
number) and a leaf level holding full records. Pages of each level are
doubly linked in key order through their FIL prev/next pointers.

The engine reads pages through a PageReader on demand; nothing is cached.

Thread Safety:
    BTreeIndex holds no mutable state and is safe to share between threads
    as long as its PageReader is.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from typing import TYPE_CHECKING, Any

from innodb_reader.domain.entities.index_page import IndexPage
from innodb_reader.domain.entities.record import Record
from innodb_reader.domain.errors import (
    CorruptChainError,
    InnodbReaderError,
    MalformedPageError,
)
from innodb_reader.domain.services.chain import ChainSequence
from innodb_reader.domain.services.record_decoder import RecordDecoder
from innodb_reader.domain.value_objects.identifiers import PageNumber

if TYPE_CHECKING:
    from innodb_reader.ports.inbound.page_reader import PageReader
    from innodb_reader.ports.inbound.record_shape import RecordShape


class BTreeIndex:
    """One B-tree index, addressed by its root page.

    Example:
        >>> index = BTreeIndex(space, root_page_number=3, shape=shape)
        >>> index.search((42,)).row
        {'name': 'alice'}
        >>> [r.key for r in index.each_record()]
        [(1,), (2,), (42,)]
    """

    def __init__(
        self,
        reader: PageReader,
        root_page_number: PageNumber | int,
        shape: RecordShape,
        decoder: RecordDecoder | None = None,
        strict: bool = True,
        on_descent: Callable[[IndexPage], None] | None = None,
        on_chain_error: Callable[[InnodbReaderError], None] | None = None,
    ) -> None:
        """Initialize the index.

        Args:
            reader: Source of decoded pages
            root_page_number: Root page of the index
            shape: Shape of the index's leaf records
            decoder: Record decoder (defaults to a UTF-8 decoder)
            strict: Whether lazy page/record sequences raise on corruption
            on_descent: Called with the leaf page reached by each descent
            on_chain_error: Called when a lazy page/record walk hits corruption
        """
        self._reader = reader
        self._root_page_number = PageNumber(root_page_number)
        self._shape = shape
        self._decoder = decoder or RecordDecoder()
        self._strict = strict
        self._on_descent = on_descent
        self._on_chain_error = on_chain_error

    @property
    def root_page_number(self) -> PageNumber:
        return self._root_page_number

    @property
    def shape(self) -> RecordShape:
        return self._shape

    def _index_page(self, page_number: PageNumber | int) -> IndexPage:
        page = self._reader.page(page_number)
        if not isinstance(page, IndexPage):
            raise MalformedPageError(
                f"Expected an index page, found {page.type_name}",
                page_number=page_number,
            )
        return page

    def root(self) -> IndexPage:
        return self._index_page(self._root_page_number)

    @property
    def height(self) -> int:
        """Number of levels, 1 for a root-only tree."""
        return self.root().level + 1

    def _child(self, parent: IndexPage, record: Record) -> IndexPage:
        child_number = record.child_page_number
        if child_number is None:
            raise CorruptChainError(
                "Node pointer without a child page",
                page_number=parent.page_number,
                offset=record.offset,
            )
        child = self._index_page(child_number)
        if child.level != parent.level - 1:
            raise CorruptChainError(
                f"Child page {child_number} is at level {child.level}, "
                f"expected {parent.level - 1}",
                page_number=parent.page_number,
                offset=record.offset,
            )
        if child.index_id != parent.index_id:
            raise CorruptChainError(
                f"Child page {child_number} belongs to index {child.index_id}",
                page_number=parent.page_number,
                offset=record.offset,
            )
        return child

    def descend_to_leaf(self, key: Sequence[Any]) -> IndexPage:
        """The leaf page whose key range covers key."""
        page = self.root()
        while not page.is_leaf:
            record = page.search(key, self._shape, self._decoder)
            if record is None:
                raise CorruptChainError(
                    "Node-pointer page has no records",
                    page_number=page.page_number,
                )
            page = self._child(page, record)

        if self._on_descent is not None:
            self._on_descent(page)
        return page

    def descend(self, key: Sequence[Any]) -> Record | None:
        """Descend from the root to the leaf boundary record for key.

        Returns:
            The last leaf record whose key is <= key; when key sorts below
            the whole leaf, its first record. None only for an empty tree.
        """
        leaf = self.descend_to_leaf(key)
        floor = leaf.floor(key, self._shape, self._decoder)
        if floor is not None:
            return floor
        return leaf.min_record(self._shape, self._decoder)

    def search(self, key: Sequence[Any]) -> Record | None:
        """The leaf record whose key equals key, or None."""
        return self.descend_to_leaf(key).search(key, self._shape, self._decoder)

    def min_page_at_level(self, level: int) -> IndexPage:
        """Leftmost page at a level, reached by repeated left descent.

        Raises:
            ValueError: If level is above the root
        """
        page = self.root()
        if not 0 <= level <= page.level:
            raise ValueError(f"Level {level} outside 0..{page.level}")

        while page.level > level:
            record = page.min_record(self._shape, self._decoder)
            if record is None:
                raise CorruptChainError(
                    "Node-pointer page has no records",
                    page_number=page.page_number,
                )
            page = self._child(page, record)
        return page

    def each_page_at_level(self, level: int) -> ChainSequence[IndexPage]:
        """Every page at a level in key order, following next pointers.

        Each hop checks that the target's prev pointer names the page it
        was reached from; revisiting a page or a broken back link ends the
        walk with CorruptChainError.
        """
        return ChainSequence(
            lambda: self._walk_level(level),
            strict=self._strict,
            on_error=self._on_chain_error,
        )

    def _walk_level(self, level: int) -> Iterator[IndexPage]:
        page = self.min_page_at_level(level)
        visited = {page.page_number}
        yield page

        while page.next is not None:
            following = self._index_page(page.next)
            if following.page_number in visited:
                raise CorruptChainError(
                    f"Page chain at level {level} loops back to page "
                    f"{following.page_number}",
                    page_number=page.page_number,
                )
            if following.prev != page.page_number:
                raise CorruptChainError(
                    f"Page {following.page_number} links back to {following.prev}, "
                    f"not {page.page_number}",
                    page_number=page.page_number,
                )
            if following.level != level:
                raise CorruptChainError(
                    f"Page {following.page_number} is at level {following.level}, "
                    f"expected {level}",
                    page_number=page.page_number,
                )
            visited.add(following.page_number)
            page = following
            yield page

    def each_leaf_page(self) -> ChainSequence[IndexPage]:
        """Every leaf page in key order."""
        return self.each_page_at_level(0)

    def each_record(self) -> ChainSequence[Record]:
        """Every user record of the index in key order."""
        return ChainSequence(
            self._walk_records, strict=self._strict, on_error=self._on_chain_error
        )

    def _walk_records(self) -> Iterator[Record]:
        for page in self._walk_level(0):
            yield from page.user_records(self._shape, strict=True, decoder=self._decoder)
