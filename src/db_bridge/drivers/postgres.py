"""Async PostgreSQL driver.

Provides ``PostgresDriver``, a ``DatabaseDriver`` using SQLAlchemy's async
engine with the ``asyncpg`` driver.  Only tables in the ``public`` schema
are dumped.  Table definitions are rebuilt from ``information_schema``;
integer columns backed by a sequence are written as ``SERIAL`` types and
their sequences are realigned after the data is loaded.  Columns of
user-defined types (enums, domains, extension types) are dumped as ``TEXT``
because the type definitions themselves are not part of the dump.

Usage:
    from db_bridge.config import ConnectionConfig
    from db_bridge.drivers.postgres import PostgresDriver

    driver = PostgresDriver(ConnectionConfig(
        kind="postgres", host="localhost", database="app", user="app",
    ))
    document = await driver.dump()
    await driver.close()
"""

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.pool import NullPool

from db_bridge.drivers import tools
from db_bridge.drivers.base import (
    SqlAlchemyDriver,
    create_async_engine_pooled,
    unverified_ssl_context,
)
from db_bridge.dump.render import quote_identifier, quote_string

logger = logging.getLogger(__name__)

# information_schema.columns.data_type -> DDL type name
_TYPE_NAMES = {
    "character varying": "VARCHAR",
    "character": "CHAR",
    "timestamp with time zone": "TIMESTAMPTZ",
    "timestamp without time zone": "TIMESTAMP",
    "time with time zone": "TIMETZ",
    "time without time zone": "TIME",
    "double precision": "DOUBLE PRECISION",
}

_SERIAL_TYPES = {
    "integer": "SERIAL",
    "bigint": "BIGSERIAL",
    "smallint": "SMALLSERIAL",
}

_TABLES_QUERY = """
    SELECT tablename
    FROM pg_tables
    WHERE schemaname = 'public'
    ORDER BY tablename
"""

_COLUMNS_QUERY = """
    SELECT column_name, data_type, udt_name, character_maximum_length,
           numeric_precision, numeric_scale, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = 'public' AND table_name = :table
    ORDER BY ordinal_position
"""

_PRIMARY_KEY_QUERY = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
     AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = 'public'
      AND tc.table_name = :table
    ORDER BY kcu.ordinal_position
"""


def column_type(column: dict[str, Any]) -> str:
    """DDL type for one ``information_schema.columns`` row.

    Example:
        >>> column_type({"data_type": "character varying", "character_maximum_length": 120})
        'VARCHAR(120)'
    """
    data_type = column["data_type"]
    udt_name = column.get("udt_name") or ""

    if data_type == "ARRAY":
        # udt_name of an array type is the element type prefixed with "_"
        return f"{udt_name[1:].upper()}[]"
    if data_type == "USER-DEFINED":
        return "TEXT"

    name = _TYPE_NAMES.get(data_type, data_type.upper())
    length = column.get("character_maximum_length")
    if data_type in ("character varying", "character") and length:
        return f"{name}({length})"
    if data_type == "numeric" and column.get("numeric_precision") is not None:
        return f"NUMERIC({column['numeric_precision']},{column.get('numeric_scale') or 0})"
    return name


def column_default(column: dict[str, Any]) -> str:
    """Default expression, without casts to a user-defined type.

    Example:
        >>> column_default({"data_type": "USER-DEFINED", "udt_name": "mood", "column_default": "'ok'::mood"})
        "'ok'"
    """
    default = column["column_default"]
    if column["data_type"] == "USER-DEFINED":
        udt_name = column.get("udt_name") or ""
        default = re.sub(rf"::(?:\"?(?:\w+\.)?{re.escape(udt_name)}\"?)$", "", default)
    return default


def is_serial(column: dict[str, Any]) -> bool:
    """Whether the column is an integer fed by a sequence."""
    default = column.get("column_default") or ""
    return column["data_type"] in _SERIAL_TYPES and default.startswith("nextval(")


def column_definition(column: dict[str, Any], inline_primary_key: bool = False) -> str:
    """Render ``name TYPE [NOT NULL] [DEFAULT ...] [PRIMARY KEY]``."""
    name = quote_identifier(column["column_name"], "postgres")
    if is_serial(column):
        parts = [name, _SERIAL_TYPES[column["data_type"]]]
    else:
        parts = [name, column_type(column)]

    if column.get("is_nullable") == "NO":
        parts.append("NOT NULL")
    if column.get("column_default") is not None and not is_serial(column):
        parts.append(f"DEFAULT {column_default(column)}")
    if inline_primary_key:
        parts.append("PRIMARY KEY")
    return " ".join(parts)


def create_table_statement(
    table: str,
    columns: Sequence[dict[str, Any]],
    primary_key: Sequence[str],
) -> str:
    """Rebuild ``CREATE TABLE`` from column metadata.

    A single-column primary key is declared inline; a composite key becomes
    a table-level ``PRIMARY KEY (...)`` constraint.
    """
    single_pk = primary_key[0] if len(primary_key) == 1 else None
    definitions = [
        column_definition(column, inline_primary_key=column["column_name"] == single_pk)
        for column in columns
    ]
    if len(primary_key) > 1:
        keys = ", ".join(quote_identifier(c, "postgres") for c in primary_key)
        definitions.append(f"PRIMARY KEY ({keys})")

    body = ",\n  ".join(definitions)
    return f"CREATE TABLE {quote_identifier(table, 'postgres')} (\n  {body}\n);"


def array_literal(values: Sequence[Any]) -> str:
    """Render a Python list as a PostgreSQL array input string (``{a,b}``)."""
    elements = []
    for value in values:
        if value is None:
            elements.append("NULL")
        elif isinstance(value, (list, tuple)):
            elements.append(array_literal(value))
        elif isinstance(value, bool):
            elements.append("t" if value else "f")
        elif isinstance(value, (int, float)):
            elements.append(str(value))
        else:
            escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
            elements.append(f'"{escaped}"')
    return "{" + ",".join(elements) + "}"


class PostgresDriver(SqlAlchemyDriver):
    """PostgreSQL implementation of the ``DatabaseDriver`` protocol.

    Uses SQLAlchemy's async engine with the ``asyncpg`` driver for
    connection pooling and stale connection detection
    (``pool_pre_ping``).  DDL is transactional, so a failed restore leaves
    the target untouched.
    """

    kind = "postgres"
    version_query = "SELECT version()"
    supports_transactional_ddl = True

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    def _url(self) -> URL:
        return URL.create(
            "postgresql+asyncpg",
            username=self.config.user,
            password=self.config.resolve_password() or None,
            host=self.config.host,
            port=self.config.effective_port,
            database=self.config.database,
        )

    def _connect_args(self) -> dict[str, Any]:
        args: dict[str, Any] = {"timeout": self.connect_timeout}
        if self.config.ssl:
            args["ssl"] = unverified_ssl_context()
        return args

    def _create_engine(self, probe: bool = False) -> AsyncEngine:
        kwargs = {**self._engine_kwargs, "connect_args": self._connect_args()}
        if probe:
            kwargs["poolclass"] = NullPool
        return create_async_engine_pooled(self._url(), **kwargs)

    def _parse_version(self, raw: Any) -> str:
        # "PostgreSQL 16.2 on x86_64-pc-linux-gnu, ..." -> "16.2"
        parts = str(raw).split()
        return parts[1] if len(parts) > 1 else str(raw)

    # ------------------------------------------------------------------
    # Dump hooks
    # ------------------------------------------------------------------

    async def _list_tables(self, conn: AsyncConnection) -> list[str]:
        result = await conn.execute(text(_TABLES_QUERY))
        return [row[0] for row in result]

    async def _columns(self, conn: AsyncConnection, table: str) -> list[dict[str, Any]]:
        result = await conn.execute(text(_COLUMNS_QUERY), {"table": table})
        return [dict(row._mapping) for row in result]

    async def _primary_key(self, conn: AsyncConnection, table: str) -> list[str]:
        result = await conn.execute(text(_PRIMARY_KEY_QUERY), {"table": table})
        return [row[0] for row in result]

    async def _create_statement(self, conn: AsyncConnection, table: str) -> str:
        columns = await self._columns(conn, table)
        primary_key = await self._primary_key(conn, table)
        logger.debug(f"Rebuilding {table} from {len(columns)} columns, primary key {primary_key}")
        return create_table_statement(table, columns, primary_key)

    def _drop_statement(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {quote_identifier(table, 'postgres')} CASCADE;"

    async def _after_table_data(self, conn: AsyncConnection, table: str) -> list[str]:
        columns = await self._columns(conn, table)
        table_ref = quote_identifier(table, "postgres")
        statements = []
        for column in columns:
            if not is_serial(column):
                continue
            name = column["column_name"]
            statements.append(
                f"SELECT setval(pg_get_serial_sequence({quote_string(table_ref)}, "
                f"{quote_string(name)}), COALESCE(MAX({quote_identifier(name, 'postgres')}), 0) + 1, "
                f"false) FROM {table_ref};"
            )
        return statements

    def _prepare_row(self, row: Sequence[Any]) -> Sequence[Any]:
        return [array_literal(v) if isinstance(v, list) else v for v in row]

    # ------------------------------------------------------------------
    # Native tools
    # ------------------------------------------------------------------

    def _tool_args(self) -> list[str]:
        return [
            "-h", self.config.host,
            "-p", str(self.config.effective_port),
            "-U", self.config.user,
            "-d", self.config.database,
        ]

    def _tool_env(self) -> dict[str, str]:
        env = {"PGPASSWORD": self.config.resolve_password()}
        if self.config.ssl:
            env["PGSSLMODE"] = "require"
        return env

    def _native_backup_invocation(self, path: Path, custom: bool) -> tools.ToolInvocation:
        argv = [tools.tool_path("pg_dump"), *self._tool_args(), "--no-owner", "-f", str(path)]
        if custom:
            argv[1:1] = ["-F", "c"]
        return tools.ToolInvocation(argv=argv, env=self._tool_env())

    def _native_restore_invocation(self, path: Path) -> tools.ToolInvocation:
        if path.suffix == ".dump":
            argv = [
                tools.tool_path("pg_restore"),
                *self._tool_args(),
                "--clean",
                "--if-exists",
                "--no-owner",
                "--single-transaction",
                str(path),
            ]
        else:
            argv = [
                tools.tool_path("psql"),
                *self._tool_args(),
                "-v", "ON_ERROR_STOP=1",
                "--single-transaction",
                "-f", str(path),
            ]
        return tools.ToolInvocation(argv=argv, env=self._tool_env())
