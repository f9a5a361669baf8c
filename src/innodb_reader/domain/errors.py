"""Errors raised while decoding tablespace structures.

Every failure is scoped to a single page, record or traversal; none of these
is fatal to the host process. Checksum mismatches are not errors at all and
are reported through logging and metrics instead.
"""

from __future__ import annotations


class InnodbReaderError(Exception):
    """Base class for all reader errors.

    Attributes:
        page_number: Page the failure is scoped to, when known
        offset: Byte offset within that page, when known
    """

    def __init__(
        self,
        message: str,
        page_number: int | None = None,
        offset: int | None = None,
    ) -> None:
        self.page_number = page_number
        self.offset = offset
        if page_number is not None:
            where = f"page {page_number}"
            if offset is not None:
                where += f" offset {offset}"
            message = f"{message} ({where})"
        super().__init__(message)


class MalformedPageError(InnodbReaderError):
    """Raised when a buffer cannot be a page of the declared size or type."""


class CorruptChainError(InnodbReaderError):
    """Raised on a record or page linked-list cycle or link inconsistency."""


class ShapeMismatchError(InnodbReaderError):
    """Raised when a record shape disagrees with the stored record layout."""
