"""Pydantic models for connection configuration and db.toml settings."""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from db_bridge.errors import ConfigurationError

EngineKind = Literal["postgres", "mysql", "sqlite"]

ENGINE_KINDS: tuple[str, ...] = ("postgres", "mysql", "sqlite")
SERVER_KINDS: frozenset[str] = frozenset({"postgres", "mysql"})

DEFAULT_PORTS: dict[str, int] = {
    "postgres": 5432,
    "mysql": 3306,
}

DEFAULT_CONNECT_TIMEOUT = 10.0


# ============================================================================
# Connection Models
# ============================================================================


class ConnectionConfig(BaseModel):
    """Connection settings for one database, as stored in a db.toml profile.

    Server engines (``postgres``, ``mysql``) use the network fields; the
    ``sqlite`` engine uses ``path``.  Call ``check()`` before handing the
    config to a driver.
    """

    kind: EngineKind
    name: str = ""
    description: str = ""

    # Server engines
    host: str = "localhost"
    port: int | None = None
    database: str = ""
    user: str = ""
    password: str = ""
    password_env: str | None = None  # env var holding the password
    ssl: bool = False

    # Embedded engine
    path: str | None = None
    create_if_missing: bool = False

    @property
    def is_server(self) -> bool:
        """Whether this config targets a network server engine."""
        return self.kind in SERVER_KINDS

    @property
    def effective_port(self) -> int | None:
        """Configured port, or the engine's default port."""
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS.get(self.kind)

    @property
    def label(self) -> str:
        """Short human-readable label (``postgres://host:5432/app``)."""
        if self.is_server:
            return f"{self.kind}://{self.host}:{self.effective_port}/{self.database}"
        return f"sqlite://{self.path}"

    def resolve_password(self) -> str:
        """Return the password, reading ``password_env`` when it is set.

        Raises:
            ConfigurationError: If ``password_env`` names an unset variable.
        """
        if self.password_env:
            value = os.environ.get(self.password_env)
            if value is None:
                raise ConfigurationError(
                    f"Environment variable '{self.password_env}' is not set "
                    f"(password for {self.name or self.label})"
                )
            return value
        return self.password

    def resolved_path(self) -> Path:
        """Absolute path of the SQLite database file.

        Raises:
            ConfigurationError: If no path is configured.
        """
        if not self.path:
            raise ConfigurationError("SQLite connection requires a file path")
        return Path(self.path).expanduser().resolve()

    def check(self) -> None:
        """Validate that the config carries the fields its engine requires.

        Raises:
            ConfigurationError: If a server engine lacks credentials or a
                database name, or the SQLite path is missing or its parent
                directory does not exist.
        """
        if self.is_server:
            missing = [
                field_name
                for field_name in ("host", "database", "user")
                if not getattr(self, field_name)
            ]
            if missing:
                raise ConfigurationError(
                    f"{self.kind} connection '{self.name or self.label}' is missing "
                    f"required fields: {', '.join(missing)}"
                )
            return

        db_path = self.resolved_path()
        if not db_path.parent.is_dir():
            raise ConfigurationError(
                f"SQLite path is not resolvable, directory does not exist: {db_path.parent}"
            )

    def identity(self) -> tuple:
        """Tuple identifying the physical database this config points at.

        Two configs with equal identities address the same database: same
        engine, host, port and database name, or the same SQLite file.
        """
        if self.is_server:
            host = self.host.lower()
            if host in ("127.0.0.1", "::1"):
                host = "localhost"
            return (self.kind, host, self.effective_port, self.database)
        return (self.kind, str(self.resolved_path()))


# ============================================================================
# db.toml Models
# ============================================================================


class DatabaseConfig(BaseModel):
    """Complete configuration loaded from db.toml."""

    profiles: dict[str, ConnectionConfig] = Field(default_factory=dict)
    work_dir: str | None = None
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
