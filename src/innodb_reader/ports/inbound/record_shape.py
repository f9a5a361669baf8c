"""Record shape port.

A record shape is the caller-supplied description of the fields an index
record carries. The record decoder consumes it and never derives one on its
own; RecordDescriber is the stock implementation.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from innodb_reader.domain.value_objects import ColumnDescriptor


@runtime_checkable
class RecordShape(Protocol):
    """Protocol for record shape descriptions.

    Fields are numbered in on-disk order: key fields first, then (for
    clustered indexes) the system fields, then the remaining row fields.
    """

    @property
    @abstractmethod
    def field_count(self) -> int:
        """Return the number of fields in a leaf record."""
        ...

    @property
    @abstractmethod
    def key_count(self) -> int:
        """Return the number of leading key fields.

        Node-pointer records carry exactly these fields followed by the
        child page number.
        """
        ...

    @abstractmethod
    def field_at(self, index: int) -> ColumnDescriptor:
        """Return the descriptor of the index-th field.

        Raises:
            IndexError: If index is outside 0..field_count - 1.
        """
        ...
