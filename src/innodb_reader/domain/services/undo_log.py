"""Walk one transaction's undo log across its undo pages.

An undo log starts at a log header on the first page of an undo segment and
continues onto further pages of the segment, linked through the list node in
each page's undo page header. On the first page the log's records run from
the header's log start to the next log header (or the page's free offset);
on every following page they run from the page header's start to its free
offset.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

from innodb_reader.domain.entities.undo_page import UndoLogHeader, UndoLogPage, UndoRecord
from innodb_reader.domain.errors import CorruptChainError, MalformedPageError
from innodb_reader.domain.services.chain import ChainSequence
from innodb_reader.domain.value_objects.identifiers import PageNumber

if TYPE_CHECKING:
    from innodb_reader.ports.inbound.page_reader import PageReader


class UndoLog:
    """One undo log addressed by its header page and header offset.

    Example:
        >>> log = UndoLog(space, page_number=312, header_offset=86)
        >>> log.header.trx_id
        1843
        >>> [r.undo_no for r in log.records()]
        [0, 1, 2]
    """

    def __init__(
        self,
        reader: PageReader,
        page_number: PageNumber | int,
        header_offset: int | None = None,
        strict: bool = True,
    ) -> None:
        self._reader = reader
        self._page_number = PageNumber(page_number)
        self._strict = strict
        first = self.first_page()
        self._header = first.log_header(header_offset)

    @property
    def page_number(self) -> PageNumber:
        return self._page_number

    @property
    def header(self) -> UndoLogHeader:
        return self._header

    def _undo_page(self, page_number: PageNumber | int) -> UndoLogPage:
        page = self._reader.page(page_number)
        if not isinstance(page, UndoLogPage):
            raise MalformedPageError(
                f"Expected an undo log page, found {page.type_name}",
                page_number=page_number,
            )
        return page

    def first_page(self) -> UndoLogPage:
        return self._undo_page(self._page_number)

    def pages(self) -> ChainSequence[UndoLogPage]:
        """The undo pages holding this log, first page first."""
        return ChainSequence(self._walk_pages, strict=self._strict)

    def _walk_pages(self) -> Iterator[UndoLogPage]:
        page = self.first_page()
        visited = {page.page_number}
        yield page

        # Only the newest log on a page can continue onto further pages
        if self._header.next_log:
            return

        while True:
            following = page.page_header.node.next
            if following.is_null:
                return
            if following.page_number in visited:
                raise CorruptChainError(
                    f"Undo page list loops back to page {following.page_number}",
                    page_number=page.page_number,
                )
            page = self._undo_page(following.page_number)
            visited.add(page.page_number)
            yield page

    def records(self) -> ChainSequence[UndoRecord]:
        """Every undo record of the log in the order it was written."""

        def walk() -> Iterator[UndoRecord]:
            for page in self._walk_pages():
                header = self._header if page.page_number == self._page_number else None
                yield from page.records(header, strict=True)

        return ChainSequence(walk, strict=self._strict)
