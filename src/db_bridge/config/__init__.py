"""Configuration management: connection profiles, TOML loading, and config models.

Usage:
    >>> from db_bridge.config import load_db_config, ConnectionConfig, DatabaseConfig
"""

from db_bridge.config.loader import load_db_config
from db_bridge.config.models import ConnectionConfig, DatabaseConfig, EngineKind

__all__ = ["load_db_config", "ConnectionConfig", "DatabaseConfig", "EngineKind"]
