"""Restartable lazy sequences over linked on-disk structures.

Record chains, leaf page chains, file lists and undo record lists are all
walked lazily. A walk that runs into corruption stops at that point: the
items produced so far stay with the caller, the failure is kept on the
sequence, and it is re-raised only in strict mode.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Generic, TypeVar

from innodb_reader.domain.errors import InnodbReaderError


T = TypeVar("T")


@dataclass(frozen=True)
class ChainResult(Generic[T]):
    """Items and failure of one completed walk."""

    items: list[T]
    error: InnodbReaderError | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ChainSequence(Generic[T]):
    """A finite, restartable sequence produced by walking a chain.

    Each iteration calls the factory for a fresh walk, so the sequence can
    be iterated any number of times. The outcome of the most recent walk is
    available as ``error`` / ``failed``; that state is shared, so a
    sequence iterated from several threads at once should use ``collect``,
    which returns the outcome of its own walk.

    Example:
        >>> records = page.records(shape, strict=False)
        >>> rows = list(records)
        >>> if records.failed:
        ...     print("chain broken after", len(rows), "records:", records.error)
    """

    def __init__(
        self,
        factory: Callable[[], Iterator[T]],
        strict: bool = True,
        on_error: Callable[[InnodbReaderError], None] | None = None,
    ) -> None:
        """
        Args:
            factory: Returns a new iterator walking the chain from its start
            strict: Re-raise a walk failure after recording it
            on_error: Called with the failure before it is recorded
        """
        self._factory = factory
        self._strict = strict
        self._on_error = on_error
        self._error: InnodbReaderError | None = None

    def __iter__(self) -> Iterator[T]:
        self._error = None
        failures: list[InnodbReaderError] = []
        try:
            yield from self._walk(failures)
        finally:
            if failures:
                self._error = failures[0]

    def _walk(self, failures: list[InnodbReaderError]) -> Iterator[T]:
        try:
            yield from self._factory()
        except InnodbReaderError as exc:
            failures.append(exc)
            if self._on_error is not None:
                self._on_error(exc)
            if self._strict:
                raise

    @property
    def strict(self) -> bool:
        return self._strict

    @property
    def error(self) -> InnodbReaderError | None:
        """Failure that ended the most recent walk, if any."""
        return self._error

    @property
    def failed(self) -> bool:
        return self._error is not None

    def collect(self) -> ChainResult[T]:
        """Walk the chain once and return its items with its own failure.

        Raises:
            InnodbReaderError: If the walk fails and the sequence is strict
        """
        failures: list[InnodbReaderError] = []
        items = list(self._walk(failures))
        return ChainResult(items, failures[0] if failures else None)

    def to_list(self) -> list[T]:
        return list(self)

    def first(self) -> T | None:
        for item in self:
            return item
        return None
