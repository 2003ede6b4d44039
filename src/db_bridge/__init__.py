"""db-bridge: Async cross-engine backup, restore and migration.

Dumps PostgreSQL, MySQL and SQLite databases to portable SQL text,
translates that text between dialects, and replays it against another
engine with progress reporting and typed errors.

Usage:
    from db_bridge import ConnectionConfig, create_driver, migrate
    from db_bridge import BackupOptions, split_statements, rewrite
    from db_bridge import get_profile, load_db_config
"""

__version__ = "0.1.0"

# Config
from db_bridge.config.loader import load_db_config
from db_bridge.config.models import ConnectionConfig, DatabaseConfig, EngineKind

# Dump documents
from db_bridge.dump.models import (
    BackupOptions,
    BackupProgress,
    DumpDocument,
    RestoreProgress,
)
from db_bridge.dump.tokenizer import split_statements

# Translation
from db_bridge.translate.dialect import rewrite

# Drivers
from db_bridge.drivers.base import DatabaseDriver, HealthResult

# Factory
from db_bridge.factory import create_driver, get_profile

# Migration
from db_bridge.migration.orchestrator import (
    MigrationProgress,
    MigrationResult,
    MigrationRun,
    migrate,
)

# Errors
from db_bridge.errors import (
    ConfigurationError,
    ConnectivityError,
    DbBridgeError,
    DumpError,
    ProfileNotFoundError,
    RestoreError,
    ToolError,
    TranslationError,
)

__all__ = [
    # Config
    "load_db_config",
    "ConnectionConfig",
    "DatabaseConfig",
    "EngineKind",
    # Dump documents
    "BackupOptions",
    "BackupProgress",
    "RestoreProgress",
    "DumpDocument",
    "split_statements",
    # Translation
    "rewrite",
    # Drivers
    "DatabaseDriver",
    "HealthResult",
    # Factory
    "create_driver",
    "get_profile",
    # Migration
    "MigrationProgress",
    "MigrationResult",
    "MigrationRun",
    "migrate",
    # Errors
    "DbBridgeError",
    "ConfigurationError",
    "ProfileNotFoundError",
    "ConnectivityError",
    "DumpError",
    "TranslationError",
    "RestoreError",
    "ToolError",
]
