"""Async SQLite driver.

Provides ``SQLiteDriver``, a ``DatabaseDriver`` using SQLAlchemy's async
engine with the ``aiosqlite`` driver.  Table definitions are the ``sql``
stored in ``sqlite_master``; internal ``sqlite_*`` tables are skipped.

The Python ``sqlite3`` module does not begin transactions before DDL, so
the driver disables its implicit handling and emits ``BEGIN`` itself.
``CREATE``/``DROP`` statements then roll back with the rest of a failed
restore.

The health check opens the file read-only and never creates it.  A missing
file fails the probe unless the profile sets ``create_if_missing``.
"""

import logging
from pathlib import Path

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from db_bridge.drivers import tools
from db_bridge.drivers.base import SqlAlchemyDriver
from db_bridge.errors import ConfigurationError, ConnectivityError

logger = logging.getLogger(__name__)

_TABLES_QUERY = r"""
    SELECT name
    FROM sqlite_master
    WHERE type = 'table' AND name NOT LIKE 'sqlite\_%' ESCAPE '\'
    ORDER BY name
"""

_CREATE_QUERY = "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"


def _enable_explicit_transactions(engine: AsyncEngine) -> None:
    """Let SQLAlchemy, not pysqlite, decide where transactions begin."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class SQLiteDriver(SqlAlchemyDriver):
    """SQLite implementation of the ``DatabaseDriver`` protocol."""

    kind = "sqlite"
    version_query = "SELECT sqlite_version()"
    supports_transactional_ddl = True

    @property
    def path(self) -> Path:
        """Absolute path of the database file."""
        return self.config.resolved_path()

    def _create_engine(self, probe: bool = False) -> AsyncEngine:
        path = self.path
        if probe:
            if path.exists():
                url = f"sqlite+aiosqlite:///file:{path}?mode=ro&uri=true"
            elif self.config.create_if_missing:
                logger.debug(f"{path} does not exist yet; probing an in-memory database")
                url = "sqlite+aiosqlite:///:memory:"
            else:
                raise ConnectivityError(f"Database file not found: {path}")
            return create_async_engine(url, poolclass=NullPool, **self._engine_kwargs)

        if not path.exists() and not self.config.create_if_missing:
            raise ConnectivityError(f"Database file not found: {path}")

        engine = create_async_engine(
            f"sqlite+aiosqlite:///{path}",
            poolclass=NullPool,
            connect_args={"timeout": self.connect_timeout},
            **self._engine_kwargs,
        )
        _enable_explicit_transactions(engine)
        return engine

    # ------------------------------------------------------------------
    # Dump hooks
    # ------------------------------------------------------------------

    async def _list_tables(self, conn: AsyncConnection) -> list[str]:
        result = await conn.execute(text(_TABLES_QUERY))
        return [row[0] for row in result]

    async def _create_statement(self, conn: AsyncConnection, table: str) -> str:
        result = await conn.execute(text(_CREATE_QUERY), {"name": table})
        sql = result.scalar()
        if sql is None:
            raise LookupError(f"No definition stored for table {table}")
        return f"{sql};"

    # ------------------------------------------------------------------
    # Native tools
    # ------------------------------------------------------------------

    def _native_backup_invocation(self, path: Path, custom: bool) -> tools.ToolInvocation:
        if custom:
            raise ConfigurationError("Custom backup format is only supported for PostgreSQL")
        return tools.ToolInvocation(
            argv=[tools.tool_path("sqlite3"), str(self.path), ".dump"],
            stdout_path=path,
        )

    def _native_restore_invocation(self, path: Path) -> tools.ToolInvocation:
        return tools.ToolInvocation(
            argv=[tools.tool_path("sqlite3"), str(self.path)],
            stdin_path=path,
        )
