"""Application layer for the tablespace reader.

The application layer wires the domain to its page source and to the
observability stack.

Exports:
    Space:
        - Space: Main entry point for reading a tablespace
        - TracedIndex: B-tree index whose walks are traced
"""

from innodb_reader.application.space import Space, TracedIndex

__all__ = [
    "Space",
    "TracedIndex",
]
