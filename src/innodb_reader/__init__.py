"""
InnoDB Reader - offline decoder for InnoDB tablespace files

Reads raw tablespace files without a running server and reconstructs pages,
B-tree indexes, records, free-space bookkeeping, undo logs and redo log
blocks. Intended for forensic analysis, recovery tooling and teaching the
on-disk format.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
