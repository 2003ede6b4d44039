"""TOML loader for db-bridge profiles and settings."""

import os
import tomllib
from pathlib import Path

from db_bridge.config.models import ConnectionConfig, DatabaseConfig
from db_bridge.errors import ConfigurationError

CONFIG_ENV_VAR = "DB_BRIDGE_CONFIG"


def default_config_path() -> Path:
    """Location of db.toml: ``$DB_BRIDGE_CONFIG`` or ``./db.toml``."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path.cwd() / "db.toml"


def load_db_config(config_path: Path | str | None = None) -> DatabaseConfig:
    """Load database configuration from a TOML file.

    Args:
        config_path: Path to db.toml (default: ``default_config_path()``)

    Returns:
        DatabaseConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If a profile or the settings table is invalid
    """
    if config_path is None:
        config_path = default_config_path()
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with [profiles.<name>] tables or set {CONFIG_ENV_VAR}."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

    # Parse profiles; relative SQLite paths resolve against the config file
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profile_data = {"name": name, **profile_data}
        try:
            profile = ConnectionConfig(**profile_data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid profile '{name}': {e}") from e
        if profile.path and not Path(profile.path).expanduser().is_absolute():
            profile.path = str(config_path.parent / profile.path)
        profiles[name] = profile

    settings = data.get("settings", {})

    try:
        return DatabaseConfig(
            profiles=profiles,
            work_dir=settings.get("work_dir"),
            connect_timeout=settings.get("connect_timeout", 10.0),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid [settings] in {config_path}: {e}") from e
