"""Ports layer - interface definitions following Hexagonal Architecture.

Ports are abstract interfaces (protocols) that define contracts:
- Inbound ports: APIs offered to callers (RecordShape, PageReader)
- Outbound ports: Dependencies on storage (PageSource)

Adapters implement these ports with concrete functionality.
"""

from innodb_reader.ports.inbound import PageReader, RecordShape
from innodb_reader.ports.outbound import PageSource

__all__ = [
    # Inbound ports
    "PageReader",
    "RecordShape",
    # Outbound ports
    "PageSource",
]
