"""Domain entities for the tablespace reader.

Entities decode one on-disk structure each and are immutable once built.

Modules:
    cursor:       ByteCursor, bounds-checked forward/backward reads
    page:         FIL header/trailer, Page base class and type dispatch
    flst:         File-list base nodes and list nodes
    fsp_page:     FSP_HDR/XDES pages and the space header
    xdes:         Extent descriptor entries
    inode:        INODE pages and file-segment inodes
    index_page:   INDEX pages: header, directory, record chain, search
    record:       Record headers, field values, extern references
    blob_page:    BLOB and LOB overflow pages
    system_pages: SYS and TRX_SYS pages
    undo_page:    UNDO_LOG pages and undo records
    log_block:    Redo log blocks and log records

Entities and services refer to each other, so import from the submodules
directly rather than from this package.
"""
