"""Page source port for raw tablespace I/O.

This outbound port defines the contract for fetching fixed-size page
buffers from whatever backs a tablespace: one data file, a set of files
concatenated in order (the system tablespace), or an in-memory image.

The page source is responsible for:
- Knowing the tablespace page size
- Returning exactly page_size bytes for a page number
- Reporting how many pages exist
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from innodb_reader.domain.value_objects import PageNumber


class PageSource(Protocol):
    """Protocol for reading raw pages.

    The page source has no knowledge of page contents beyond what it needs
    to establish the page size.

    Thread Safety:
        Implementations must be safe for concurrent reads.
    """

    @property
    @abstractmethod
    def page_size(self) -> int:
        """Return the tablespace page size in bytes."""
        ...

    @property
    @abstractmethod
    def page_count(self) -> int:
        """Return the number of whole pages available."""
        ...

    @abstractmethod
    def read_page(self, page_number: PageNumber) -> bytes:
        """Read one page.

        Args:
            page_number: The page to read.

        Returns:
            Raw page data (exactly page_size bytes).

        Raises:
            MalformedPageError: If page_number is outside the tablespace or
                the backing storage returns a short read.
        """
        ...
