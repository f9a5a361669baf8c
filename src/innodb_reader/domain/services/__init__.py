"""Domain services for the tablespace reader.

Modules:
    checksum:       Page checksum algorithms and validation
    chain:          Restartable lazy sequences over linked structures
    field_codec:    Per-type column value decoding
    record_decoder: Compact and redundant record decoding
    key_compare:    Key ordering used by index search
    btree_index:    B-tree traversal
    undo_log:       Undo log walks across undo pages

Import from the submodules directly rather than from this package.
"""
