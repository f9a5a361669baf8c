"""File-backed page source.

This adapter implements the PageSource protocol over one or more tablespace
files. A file-per-table tablespace is a single .ibd file; the system
tablespace may span several ibdata files whose pages are numbered
consecutively across them.

Page Size:
    Read from the FSP flags in page 0's space header, unless the caller or
    the configuration supplies an override. Compressed tablespaces report
    their physical (zip) page size.

Thread Safety:
    Files are opened once at construction. Each seek+read pair runs under
    a lock, so independent threads may read pages concurrently.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from innodb_reader.domain.entities.fsp_page import SpaceHeader, physical_page_size
from innodb_reader.domain.entities.page import FilHeader, is_valid_page_size
from innodb_reader.domain.errors import MalformedPageError
from innodb_reader.domain.value_objects import PageNumber
from innodb_reader.infrastructure.config import get_config
from innodb_reader.infrastructure.logging import get_logger


logger = get_logger(__name__)

FLAGS_OFFSET = FilHeader.SIZE + 16


@dataclass(frozen=True, slots=True)
class _SpaceFile:
    path: Path
    first_page: int
    page_count: int


def detect_page_size(header: bytes) -> int:
    """Page size from the FSP flags of page 0.

    Args:
        header: At least the first FilHeader.SIZE + SpaceHeader.SIZE bytes
            of the tablespace

    Raises:
        MalformedPageError: If the header is short or the flags encode an
            impossible size
    """
    if len(header) < FilHeader.SIZE + SpaceHeader.SIZE:
        raise MalformedPageError(
            f"Tablespace too short to hold a space header ({len(header)} bytes)",
            page_number=0,
        )
    flags = int.from_bytes(header[FLAGS_OFFSET : FLAGS_OFFSET + 4], "big")
    size = physical_page_size(flags)
    if size > 65536 or size & (size - 1):
        raise MalformedPageError(
            f"FSP flags 0x{flags:x} encode an invalid page size {size}",
            page_number=0,
            offset=FLAGS_OFFSET,
        )
    return size


class FileSpace:
    """PageSource over tablespace files on disk.

    Attributes:
        paths: Files making up the tablespace, in page order
        page_size: Size of each page in bytes

    Example:
        >>> with FileSpace("t1.ibd") as source:
        ...     source.page_size, source.page_count
        (16384, 7)
    """

    def __init__(
        self,
        paths: str | Path | Sequence[str | Path],
        page_size: int | None = None,
    ) -> None:
        """Open the tablespace files.

        Args:
            paths: One file, or the files of a multi-file system tablespace
            page_size: Page size override (default: config, then page 0)

        Raises:
            FileNotFoundError: If a file does not exist
            ValueError: If no file is given or the page size is invalid
            MalformedPageError: If the page size cannot be detected
        """
        if isinstance(paths, (str, Path)):
            paths = [paths]
        self._paths = [Path(p) for p in paths]
        if not self._paths:
            raise ValueError("A tablespace needs at least one file")

        self._lock = threading.Lock()
        self._closed = False
        self._handles: list[BinaryIO] = []
        try:
            for path in self._paths:
                self._handles.append(open(path, "rb"))
            self._page_size = self._resolve_page_size(page_size)
            self._files = self._map_files()
        except BaseException:
            self._close_handles()
            raise

        logger.info(
            "tablespace_opened",
            files=[str(p) for p in self._paths],
            page_size=self._page_size,
            page_count=self.page_count,
        )

    def _resolve_page_size(self, page_size: int | None) -> int:
        size = page_size or get_config().reader.page_size
        if size is None:
            handle = self._handles[0]
            handle.seek(0)
            size = detect_page_size(handle.read(FilHeader.SIZE + SpaceHeader.SIZE))
            logger.debug("page_size_detected", path=str(self._paths[0]), page_size=size)
        elif not is_valid_page_size(size):
            raise ValueError(f"Invalid page size: {size}")
        return size

    def _map_files(self) -> list[_SpaceFile]:
        files: list[_SpaceFile] = []
        first_page = 0
        for path in self._paths:
            file_size = path.stat().st_size
            count, remainder = divmod(file_size, self._page_size)
            if remainder:
                logger.warning(
                    "partial_trailing_page",
                    path=str(path),
                    file_size=file_size,
                    ignored_bytes=remainder,
                )
            files.append(_SpaceFile(path=path, first_page=first_page, page_count=count))
            first_page += count
        return files

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    @property
    def page_size(self) -> int:
        """Return the page size in bytes."""
        return self._page_size

    @property
    def page_count(self) -> int:
        """Return the number of whole pages across all files."""
        return sum(f.page_count for f in self._files)

    def _locate(self, page_number: int) -> tuple[int, int]:
        for index, space_file in enumerate(self._files):
            if space_file.first_page <= page_number < space_file.first_page + space_file.page_count:
                return index, (page_number - space_file.first_page) * self._page_size
        raise MalformedPageError(
            f"Page outside tablespace of {self.page_count} pages",
            page_number=page_number,
        )

    def read_page(self, page_number: PageNumber | int) -> bytes:
        """Read one page.

        Args:
            page_number: The page to read.

        Returns:
            Raw page data (exactly page_size bytes).

        Raises:
            MalformedPageError: If page_number is outside the tablespace or
                the file returns a short read.
            IOError: If the source is closed.
        """
        if self._closed:
            raise IOError("Tablespace is closed")
        if page_number < 0:
            raise MalformedPageError("Negative page number", page_number=page_number)

        index, offset = self._locate(page_number)
        handle = self._handles[index]
        with self._lock:
            handle.seek(offset)
            data = handle.read(self._page_size)

        if len(data) != self._page_size:
            raise MalformedPageError(
                f"Short read: got {len(data)} bytes, expected {self._page_size}",
                page_number=page_number,
            )
        return data

    def _close_handles(self) -> None:
        for handle in self._handles:
            handle.close()
        self._handles = []

    def close(self) -> None:
        """Close the tablespace files."""
        if self._closed:
            return

        with self._lock:
            self._closed = True
            self._close_handles()
        logger.debug("tablespace_closed", files=[str(p) for p in self._paths])

    def __enter__(self) -> FileSpace:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()

    def __del__(self) -> None:
        """Destructor - ensure files are closed."""
        if hasattr(self, "_closed"):
            self.close()


class MemorySpace:
    """PageSource over an in-memory tablespace image.

    Useful for pages captured from another tool or built in tests.
    """

    def __init__(self, image: bytes, page_size: int | None = None) -> None:
        """
        Args:
            image: Concatenated page bytes
            page_size: Page size (default: detect from page 0)

        Raises:
            ValueError: If the page size is invalid
            MalformedPageError: If the page size cannot be detected
        """
        self._image = bytes(image)
        self._page_size = page_size or detect_page_size(self._image)
        if page_size is not None and not is_valid_page_size(page_size):
            raise ValueError(f"Invalid page size: {page_size}")

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def page_count(self) -> int:
        return len(self._image) // self._page_size

    def read_page(self, page_number: PageNumber | int) -> bytes:
        if not 0 <= page_number < self.page_count:
            raise MalformedPageError(
                f"Page outside tablespace of {self.page_count} pages",
                page_number=page_number,
            )
        start = page_number * self._page_size
        return self._image[start : start + self._page_size]
