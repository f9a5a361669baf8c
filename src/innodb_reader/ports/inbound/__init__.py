"""Inbound ports - APIs offered to the reader's callers and services.

Exports:
    - RecordShape: Caller-supplied description of an index record's fields
    - PageReader: Typed page access offered by the Space facade
"""

from innodb_reader.ports.inbound.page_reader import PageReader
from innodb_reader.ports.inbound.record_shape import RecordShape

__all__ = [
    "PageReader",
    "RecordShape",
]
