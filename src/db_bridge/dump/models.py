"""Dump document, backup options, and progress snapshot models.

A dump is plain SQL text: ``DROP``/``CREATE``/``INSERT`` statements for each
table in enumeration order, separated by newlines and annotated with ``--``
comments.  Progress is reported as immutable snapshots.

Usage:
    from db_bridge.dump.models import BackupOptions, DumpDocument

    doc = await driver.dump(BackupOptions(schema_only=True))
    doc.write("backups/app.sql")

    doc = DumpDocument.read("backups/app.sql", kind="sqlite")
    for statement in doc.statements:
        ...
"""

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from db_bridge.config.models import EngineKind
from db_bridge.dump.tokenizer import split_statements


class BackupOptions(BaseModel):
    """Which phases a dump includes.

    Both flags default to ``False``, meaning schema and data.  When both are
    set, ``schema_only`` is checked first and wins: the dump is schema-only.
    """

    schema_only: bool = False
    data_only: bool = False

    @property
    def include_schema(self) -> bool:
        """Whether DROP/CREATE statements are emitted."""
        if self.schema_only:
            return True
        return not self.data_only

    @property
    def include_data(self) -> bool:
        """Whether INSERT statements are emitted."""
        if self.schema_only:
            return False
        return True


# ============================================================================
# Progress Snapshots
# ============================================================================


def percent(done: int, total: int) -> int:
    """Completion percentage rounded down, so 100 means done; an empty job counts as complete."""
    if total <= 0:
        return 100
    return done * 100 // total


class BackupProgress(BaseModel):
    """Dump progress: emitted once per table, then once at completion."""

    model_config = ConfigDict(frozen=True)

    current_table: str | None = None
    processed_tables: int = 0
    total_tables: int = 0
    percentage: int = 0


class RestoreProgress(BaseModel):
    """Restore progress: emitted once per statement."""

    model_config = ConfigDict(frozen=True)

    current_statement: int = 0
    total_statements: int = 0
    percentage: int = 0


Progress = Union[BackupProgress, RestoreProgress]
ProgressCallback = Callable[[Progress], None]


# ============================================================================
# Dump Document
# ============================================================================


class DumpDocument(BaseModel):
    """Portable SQL rendering of a database's schema and/or data."""

    kind: EngineKind
    text: str
    tables: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def statements(self) -> list[str]:
        """Executable statements, comments and blanks removed."""
        return split_statements(self.text)

    def write(self, path: str | Path) -> Path:
        """Write the document as a UTF-8 ``.sql`` file and return its path."""
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(self.text, encoding="utf-8")
        return out

    @classmethod
    def read(cls, path: str | Path, kind: EngineKind) -> "DumpDocument":
        """Load a ``.sql`` file produced by ``kind``."""
        text = Path(path).read_text(encoding="utf-8")
        return cls(kind=kind, text=text)
