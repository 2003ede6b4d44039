"""Cross-engine migration: probe, dump, translate, restore."""

from db_bridge.migration.orchestrator import (
    MigrationProgress,
    MigrationResult,
    MigrationRun,
    MigrationStage,
    migrate,
)

__all__ = [
    "MigrationProgress",
    "MigrationResult",
    "MigrationRun",
    "MigrationStage",
    "migrate",
]
