"""Async MySQL driver.

Provides ``MySQLDriver``, a ``DatabaseDriver`` using SQLAlchemy's async
engine with the ``aiomysql`` driver.  Table definitions come from
``SHOW CREATE TABLE`` and the dump is wrapped in
``SET FOREIGN_KEY_CHECKS=0/1`` so tables can be recreated in any order.

Every session runs with ``NO_BACKSLASH_ESCAPES`` added to its
``sql_mode``: dumps double embedded quotes and treat backslashes as
ordinary characters, on MySQL as on every other engine.

MySQL commits DDL implicitly, so a failed restore is best-effort: the
statements before the failing one may already be applied.
"""

import logging
from pathlib import Path
from typing import Any

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.pool import NullPool

from db_bridge.drivers import tools
from db_bridge.drivers.base import (
    SqlAlchemyDriver,
    create_async_engine_pooled,
    unverified_ssl_context,
)
from db_bridge.dump.models import BackupOptions
from db_bridge.dump.render import quote_identifier
from db_bridge.errors import ConfigurationError

logger = logging.getLogger(__name__)

SESSION_INIT = (
    "SET SESSION sql_mode = "
    "CONCAT_WS(',', NULLIF(@@SESSION.sql_mode, ''), 'NO_BACKSLASH_ESCAPES')"
)


class MySQLDriver(SqlAlchemyDriver):
    """MySQL implementation of the ``DatabaseDriver`` protocol."""

    kind = "mysql"
    version_query = "SELECT VERSION()"
    supports_transactional_ddl = False

    def _url(self) -> URL:
        return URL.create(
            "mysql+aiomysql",
            username=self.config.user,
            password=self.config.resolve_password() or None,
            host=self.config.host,
            port=self.config.effective_port,
            database=self.config.database,
            query={"charset": "utf8mb4"},
        )

    def _connect_args(self) -> dict[str, Any]:
        args: dict[str, Any] = {
            "connect_timeout": self.connect_timeout,
            "init_command": SESSION_INIT,
        }
        if self.config.ssl:
            args["ssl"] = unverified_ssl_context()
        return args

    def _create_engine(self, probe: bool = False) -> AsyncEngine:
        kwargs = {**self._engine_kwargs, "connect_args": self._connect_args()}
        if probe:
            kwargs["poolclass"] = NullPool
        return create_async_engine_pooled(self._url(), **kwargs)

    # ------------------------------------------------------------------
    # Dump hooks
    # ------------------------------------------------------------------

    async def _list_tables(self, conn: AsyncConnection) -> list[str]:
        # Views are listed with Table_type = 'VIEW' and skipped
        result = await self._execute(conn, "SHOW FULL TABLES WHERE Table_type = 'BASE TABLE'")
        tables = sorted(row[0] for row in result)
        logger.debug(f"Found {len(tables)} base tables in {self.config.database}")
        return tables

    async def _create_statement(self, conn: AsyncConnection, table: str) -> str:
        result = await self._execute(
            conn, f"SHOW CREATE TABLE {quote_identifier(table, 'mysql', force=True)}"
        )
        row = result.fetchone()
        if row is None:
            raise LookupError(f"SHOW CREATE TABLE returned no rows for {table}")
        return f"{row[1]};"

    def _dump_preamble(self, options: BackupOptions) -> list[str]:
        return ["SET FOREIGN_KEY_CHECKS=0;"]

    def _dump_postamble(self, options: BackupOptions) -> list[str]:
        return ["", "SET FOREIGN_KEY_CHECKS=1;"]

    # ------------------------------------------------------------------
    # Native tools
    # ------------------------------------------------------------------

    def _tool_args(self) -> list[str]:
        args = [
            "-h", self.config.host,
            "-P", str(self.config.effective_port),
            "-u", self.config.user,
        ]
        if self.config.ssl:
            args.append("--ssl-mode=REQUIRED")
        return args

    def _tool_env(self) -> dict[str, str]:
        return {"MYSQL_PWD": self.config.resolve_password()}

    def _native_backup_invocation(self, path: Path, custom: bool) -> tools.ToolInvocation:
        if custom:
            raise ConfigurationError("Custom backup format is only supported for PostgreSQL")
        argv = [
            tools.tool_path("mysqldump"),
            *self._tool_args(),
            "--single-transaction",
            "--routines",
            "--triggers",
            f"--result-file={path}",
            self.config.database,
        ]
        return tools.ToolInvocation(argv=argv, env=self._tool_env())

    def _native_restore_invocation(self, path: Path) -> tools.ToolInvocation:
        argv = [tools.tool_path("mysql"), *self._tool_args(), self.config.database]
        return tools.ToolInvocation(argv=argv, env=self._tool_env(), stdin_path=path)
