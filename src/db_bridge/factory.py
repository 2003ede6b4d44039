"""Driver factory and profile lookup.

Maps an engine kind to its driver class and resolves named profiles from
db.toml.

Usage:
    from db_bridge.factory import create_driver, get_profile

    driver = create_driver(get_profile("prod"))
    health = await driver.health_check()
"""

import logging
from pathlib import Path
from typing import Any

from db_bridge.config.loader import load_db_config
from db_bridge.config.models import ConnectionConfig
from db_bridge.drivers.base import DatabaseDriver
from db_bridge.drivers.mysql import MySQLDriver
from db_bridge.drivers.postgres import PostgresDriver
from db_bridge.drivers.sqlite import SQLiteDriver
from db_bridge.errors import ConfigurationError, ProfileNotFoundError

logger = logging.getLogger(__name__)

DRIVERS: dict[str, type] = {
    "postgres": PostgresDriver,
    "mysql": MySQLDriver,
    "sqlite": SQLiteDriver,
}


def create_driver(config: ConnectionConfig, **kwargs: Any) -> DatabaseDriver:
    """Create the driver for ``config.kind``.

    The config is validated first, so an incomplete profile fails here
    rather than on first connection.

    Args:
        config: Connection settings.
        **kwargs: Forwarded to the driver (e.g. ``connect_timeout``).

    Returns:
        Driver instance bound to ``config``.

    Raises:
        ConfigurationError: If the kind is unsupported or the config is
            missing required fields.
    """
    driver_cls = DRIVERS.get(config.kind)
    if driver_cls is None:
        raise ConfigurationError(
            f"Unsupported engine kind '{config.kind}'. "
            f"Supported: {', '.join(DRIVERS)}"
        )
    config.check()
    logger.debug(f"Creating {driver_cls.__name__} for {config.label}")
    return driver_cls(config, **kwargs)


def get_profile(name: str, config_path: Path | str | None = None) -> ConnectionConfig:
    """Look up a profile by name in db.toml.

    Args:
        name: Profile name (the ``[profiles.<name>]`` key).
        config_path: Path to db.toml (default: ``default_config_path()``).

    Raises:
        FileNotFoundError: If db.toml does not exist.
        ProfileNotFoundError: If the profile is not defined.
    """
    config = load_db_config(config_path)
    if name not in config.profiles:
        available = ", ".join(config.profiles) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in db.toml.\n"
            f"Available profiles: {available}"
        )
    return config.profiles[name]
