"""Adapters layer - concrete implementations of port interfaces.

Adapters provide the actual implementations:
- Outbound adapters: Tablespace and redo log files on disk
"""

from innodb_reader.adapters.outbound import (
    FileSpace,
    MemorySpace,
    RedoLogFile,
)

__all__ = [
    # Outbound adapters
    "FileSpace",
    "MemorySpace",
    "RedoLogFile",
]
