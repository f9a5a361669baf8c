"""Outbound adapters - implementations of outbound ports.

These adapters read tablespace pages and redo log blocks from files.
"""

from innodb_reader.adapters.outbound.file_space import FileSpace, MemorySpace
from innodb_reader.adapters.outbound.redo_log_file import RedoLogFile

__all__ = [
    "FileSpace",
    "MemorySpace",
    "RedoLogFile",
]
