"""Dump documents: models, value rendering, and statement splitting.

Usage:
    from db_bridge.dump import BackupOptions, DumpDocument, split_statements
"""

from db_bridge.dump.models import (
    BackupOptions,
    BackupProgress,
    DumpDocument,
    ProgressCallback,
    RestoreProgress,
)
from db_bridge.dump.render import quote_identifier, render_insert, render_value
from db_bridge.dump.tokenizer import iter_statements, split_statements

__all__ = [
    "BackupOptions",
    "BackupProgress",
    "RestoreProgress",
    "ProgressCallback",
    "DumpDocument",
    "quote_identifier",
    "render_insert",
    "render_value",
    "iter_statements",
    "split_statements",
]
