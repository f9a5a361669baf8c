"""Page reader port.

The B-tree engine, inode list walks and the undo log walk need typed pages
by number. This inbound port is what the Space facade offers them.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol

from innodb_reader.domain.value_objects import PageNumber

if TYPE_CHECKING:
    from innodb_reader.domain.entities.page import Page


class PageReader(Protocol):
    """Protocol for fetching decoded pages."""

    @property
    @abstractmethod
    def page_size(self) -> int:
        """Return the tablespace page size in bytes."""
        ...

    @abstractmethod
    def page(self, page_number: PageNumber | int) -> Page:
        """Read and decode one page.

        Raises:
            MalformedPageError: If the page cannot be read or decoded.
        """
        ...
