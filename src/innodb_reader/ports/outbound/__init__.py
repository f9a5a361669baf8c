"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the storage the reader depends on.
"""

from innodb_reader.ports.outbound.page_source import PageSource

__all__ = [
    "PageSource",
]
