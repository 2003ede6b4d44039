"""Tests for the PostgreSQL driver.

DDL rebuilding is tested on plain column metadata; dump, restore and the
health check run against a fake engine, so no server is needed.
"""

import asyncio
import ssl
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.pool import NullPool

from conftest import FakeEngine, FakeResult, FakeRow
from db_bridge.config.models import ConnectionConfig
from db_bridge.drivers.base import create_async_engine_pooled, error_message
from db_bridge.drivers.postgres import (
    PostgresDriver,
    array_literal,
    column_default,
    column_definition,
    column_type,
    create_table_statement,
    is_serial,
)
from db_bridge.dump.models import BackupOptions
from db_bridge.errors import ConfigurationError, RestoreError

ID_COLUMN = {
    "column_name": "id",
    "data_type": "integer",
    "udt_name": "int4",
    "character_maximum_length": None,
    "numeric_precision": 32,
    "numeric_scale": 0,
    "is_nullable": "NO",
    "column_default": "nextval('users_id_seq'::regclass)",
}
TAGS_COLUMN = {
    "column_name": "tags",
    "data_type": "ARRAY",
    "udt_name": "_text",
    "character_maximum_length": None,
    "numeric_precision": None,
    "numeric_scale": None,
    "is_nullable": "YES",
    "column_default": None,
}
ACTIVE_COLUMN = {
    "column_name": "active",
    "data_type": "boolean",
    "udt_name": "bool",
    "character_maximum_length": None,
    "numeric_precision": None,
    "numeric_scale": None,
    "is_nullable": "NO",
    "column_default": "true",
}
MOOD_COLUMN = {
    "column_name": "mood",
    "data_type": "USER-DEFINED",
    "udt_name": "mood",
    "character_maximum_length": None,
    "numeric_precision": None,
    "numeric_scale": None,
    "is_nullable": "NO",
    "column_default": "'ok'::mood",
}


def make_config(**overrides) -> ConnectionConfig:
    fields = {"kind": "postgres", "host": "db", "database": "app", "user": "app", "password": "pw"}
    fields.update(overrides)
    return ConnectionConfig(**fields)


# ============================================================================
# DDL helpers
# ============================================================================


class TestColumnType:
    """``information_schema`` rows to DDL types."""

    def test_varchar_with_length(self) -> None:
        assert column_type({"data_type": "character varying", "character_maximum_length": 120}) == "VARCHAR(120)"

    def test_varchar_without_length(self) -> None:
        assert column_type({"data_type": "character varying"}) == "VARCHAR"

    def test_numeric_precision(self) -> None:
        column = {"data_type": "numeric", "numeric_precision": 10, "numeric_scale": 2}
        assert column_type(column) == "NUMERIC(10,2)"

    def test_timestamptz(self) -> None:
        assert column_type({"data_type": "timestamp with time zone"}) == "TIMESTAMPTZ"

    def test_array(self) -> None:
        assert column_type(TAGS_COLUMN) == "TEXT[]"

    def test_user_defined_as_text(self) -> None:
        """Enum and domain type definitions are not dumped, so their columns hold text."""
        assert column_type(MOOD_COLUMN) == "TEXT"

    def test_plain(self) -> None:
        assert column_type({"data_type": "jsonb"}) == "JSONB"


class TestColumnDefinition:
    """Column clauses and table statements."""

    def test_serial(self) -> None:
        assert is_serial(ID_COLUMN)
        assert column_definition(ID_COLUMN, inline_primary_key=True) == "id SERIAL NOT NULL PRIMARY KEY"

    def test_default_kept(self) -> None:
        assert column_definition(ACTIVE_COLUMN) == "active BOOLEAN NOT NULL DEFAULT true"

    def test_user_defined_default_cast_dropped(self) -> None:
        assert column_definition(MOOD_COLUMN) == "mood TEXT NOT NULL DEFAULT 'ok'"

    def test_qualified_user_defined_cast_dropped(self) -> None:
        column = {**MOOD_COLUMN, "column_default": "'ok'::public.mood"}
        assert column_default(column) == "'ok'"

    def test_builtin_cast_kept(self) -> None:
        column = {**ACTIVE_COLUMN, "data_type": "text", "column_default": "'n/a'::text"}
        assert column_default(column) == "'n/a'::text"

    def test_reserved_name_quoted(self) -> None:
        column = {**ACTIVE_COLUMN, "column_name": "user", "column_default": None}
        assert column_definition(column) == '"user" BOOLEAN NOT NULL'

    def test_single_primary_key_inline(self) -> None:
        statement = create_table_statement("users", [ID_COLUMN, TAGS_COLUMN], ["id"])
        assert statement == (
            "CREATE TABLE users (\n"
            "  id SERIAL NOT NULL PRIMARY KEY,\n"
            "  tags TEXT[]\n"
            ");"
        )

    def test_composite_primary_key(self) -> None:
        a = {"column_name": "a", "data_type": "integer", "is_nullable": "NO", "column_default": None}
        b = {"column_name": "b", "data_type": "text", "is_nullable": "NO", "column_default": None}
        statement = create_table_statement("pairs", [a, b], ["a", "b"])
        assert statement == (
            "CREATE TABLE pairs (\n"
            "  a INTEGER NOT NULL,\n"
            "  b TEXT NOT NULL,\n"
            "  PRIMARY KEY (a, b)\n"
            ");"
        )


class TestArrayLiteral:
    def test_strings_and_nulls(self) -> None:
        assert array_literal(["a", None, 'say "hi"']) == '{"a",NULL,"say \\"hi\\""}'

    def test_nested_numbers(self) -> None:
        assert array_literal([[1, 2], [3, 4]]) == "{{1,2},{3,4}}"

    def test_booleans(self) -> None:
        assert array_literal([True, False]) == "{t,f}"


# ============================================================================
# Engine
# ============================================================================


class TestEngine:
    """URL, connect arguments and pooling."""

    def test_url(self) -> None:
        url = PostgresDriver(make_config())._url()
        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db"
        assert url.port == 5432
        assert url.username == "app"
        assert url.password == "pw"
        assert url.database == "app"

    def test_empty_password_omitted(self) -> None:
        assert PostgresDriver(make_config(password=""))._url().password is None

    def test_connect_args(self) -> None:
        args = PostgresDriver(make_config(), connect_timeout=4)._connect_args()
        assert args == {"timeout": 4}

    def test_ssl_without_verification(self) -> None:
        args = PostgresDriver(make_config(ssl=True))._connect_args()
        context = args["ssl"]
        assert isinstance(context, ssl.SSLContext)
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    def test_probe_engine_unpooled(self) -> None:
        engine = PostgresDriver(make_config())._create_engine(probe=True)
        assert isinstance(engine.pool, NullPool)

    def test_pooled_engine_defaults(self) -> None:
        engine = create_async_engine_pooled("postgresql+asyncpg://u@h/db")
        assert engine.pool.size() == 5

    def test_parse_version(self) -> None:
        driver = PostgresDriver(make_config())
        assert driver._parse_version("PostgreSQL 16.2 on x86_64-pc-linux-gnu, compiled by gcc") == "16.2"
        assert driver._parse_version("weird") == "weird"


# ============================================================================
# Health Check
# ============================================================================


class TestHealthCheck:
    """``health_check()`` against a fake engine."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        engine = FakeEngine(lambda sql, params: FakeResult([("PostgreSQL 16.2 on x86_64, 64-bit",)]))
        driver = PostgresDriver(make_config())

        with patch.object(driver, "_create_engine", return_value=engine):
            result = await driver.health_check()

        assert result.ok is True
        assert result.version == "16.2"
        assert engine.conn.executed == ["SELECT version()"]
        assert engine.disposed is True

    @pytest.mark.asyncio
    async def test_failure_reported_not_raised(self) -> None:
        def refuse(sql, params):
            raise OSError("Connect call failed ('10.0.0.1', 5432)")

        engine = FakeEngine(refuse)
        driver = PostgresDriver(make_config())

        with patch.object(driver, "_create_engine", return_value=engine):
            result = await driver.health_check()

        assert result.ok is False
        assert "Connect call failed" in result.error
        assert result.version is None
        assert engine.disposed is True

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        async def hang(engine):
            await asyncio.sleep(5)

        engine = FakeEngine()
        driver = PostgresDriver(make_config())

        with patch.object(driver, "_create_engine", return_value=engine), \
             patch.object(driver, "_probe", hang):
            result = await driver.health_check(timeout=0.01)

        assert result.ok is False
        assert result.error == "Connection timed out after 0.01s"
        assert engine.disposed is True

    @pytest.mark.asyncio
    async def test_missing_password_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DB_BRIDGE_TEST_PG_PW", raising=False)
        driver = PostgresDriver(make_config(password_env="DB_BRIDGE_TEST_PG_PW"))

        result = await driver.health_check()

        assert result.ok is False
        assert "DB_BRIDGE_TEST_PG_PW" in result.error

    def test_error_message_unwraps_driver_error(self) -> None:
        class WrappedError(Exception):
            orig = RuntimeError('relation "missing" does not exist')

        assert error_message(WrappedError("outer")) == 'relation "missing" does not exist'
        assert error_message(ValueError()) == "ValueError"


# ============================================================================
# Dump
# ============================================================================


def dump_handler(sql: str, params: dict) -> FakeResult:
    if "FROM pg_tables" in sql:
        return FakeResult([("users",)])
    if "table_constraints" in sql:
        return FakeResult([("id",)])
    if "information_schema.columns" in sql:
        return FakeResult([FakeRow(c) for c in (ID_COLUMN, TAGS_COLUMN, ACTIVE_COLUMN)])
    if sql.startswith("SELECT * FROM"):
        return FakeResult([(1, ["a", "b"], True)], keys=["id", "tags", "active"])
    raise AssertionError(f"unexpected query: {sql}")


class TestDump:
    """Dump output built from catalog metadata."""

    @pytest.mark.asyncio
    async def test_dump(self) -> None:
        driver = PostgresDriver(make_config())
        driver._engine = FakeEngine(dump_handler)

        document = await driver.dump()

        lines = document.text.splitlines()
        assert document.tables == ["users"]
        assert "-- Engine: postgres" in lines
        assert "DROP TABLE IF EXISTS users CASCADE;" in lines
        assert "  id SERIAL NOT NULL PRIMARY KEY," in lines
        assert "  tags TEXT[]," in lines
        assert """INSERT INTO users (id, tags, active) VALUES (1, '{"a","b"}', TRUE);""" in lines
        assert lines[-1] == (
            "SELECT setval(pg_get_serial_sequence('users', 'id'), "
            "COALESCE(MAX(id), 0) + 1, false) FROM users;"
        )
        assert 'SELECT * FROM "users"' in driver._engine.conn.executed

    @pytest.mark.asyncio
    async def test_schema_only_skips_sequences(self) -> None:
        driver = PostgresDriver(make_config())
        driver._engine = FakeEngine(dump_handler)

        document = await driver.dump(BackupOptions(schema_only=True))

        assert "setval" not in document.text
        assert "INSERT INTO" not in document.text


# ============================================================================
# Restore
# ============================================================================


class TestRestore:
    """``restore()`` transaction handling."""

    @pytest.mark.asyncio
    async def test_executes_in_one_transaction(self) -> None:
        engine = FakeEngine()
        driver = PostgresDriver(make_config())
        driver._engine = engine

        executed = await driver.restore("CREATE TABLE a (id int);\nINSERT INTO a VALUES (1);\n")

        assert executed == 2
        assert engine.conn.executed == ["CREATE TABLE a (id int)", "INSERT INTO a VALUES (1)"]
        assert engine.committed is True

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self) -> None:
        class DriverError(Exception):
            orig = RuntimeError('relation "missing" does not exist')

        def handler(sql, params):
            if "missing" in sql:
                raise DriverError("wrapped")
            return FakeResult()

        engine = FakeEngine(handler)
        driver = PostgresDriver(make_config())
        driver._engine = engine

        with pytest.raises(RestoreError) as exc_info:
            await driver.restore("CREATE TABLE a (id int);\nINSERT INTO missing VALUES (1);\n")

        assert exc_info.value.index == 2
        assert exc_info.value.statement == "INSERT INTO missing VALUES (1)"
        assert 'relation "missing" does not exist' in str(exc_info.value)
        assert engine.rolled_back is True
        assert engine.committed is False

    @pytest.mark.asyncio
    async def test_close_disposes(self) -> None:
        engine = FakeEngine()
        driver = PostgresDriver(make_config())
        driver._engine = engine

        await driver.close()
        await driver.close()

        assert engine.disposed is True
        assert driver._engine is None


# ============================================================================
# Native tools
# ============================================================================


class TestNativeTools:
    """pg_dump / pg_restore / psql invocations."""

    @pytest.fixture(autouse=True)
    def bin_dir(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_BRIDGE_BIN_DIR", "/opt/pg/bin")

    def test_backup_plain(self, tmp_path: Path) -> None:
        out = tmp_path / "app.sql"
        invocation = PostgresDriver(make_config())._native_backup_invocation(out, custom=False)
        assert invocation.argv == [
            "/opt/pg/bin/pg_dump",
            "-h", "db", "-p", "5432", "-U", "app", "-d", "app",
            "--no-owner", "-f", str(out),
        ]
        assert invocation.env == {"PGPASSWORD": "pw"}

    def test_backup_custom_format(self, tmp_path: Path) -> None:
        out = tmp_path / "app.dump"
        invocation = PostgresDriver(make_config())._native_backup_invocation(out, custom=True)
        assert invocation.argv[:3] == ["/opt/pg/bin/pg_dump", "-F", "c"]

    def test_ssl_env(self, tmp_path: Path) -> None:
        invocation = PostgresDriver(make_config(ssl=True))._native_backup_invocation(
            tmp_path / "a.sql", custom=False
        )
        assert invocation.env["PGSSLMODE"] == "require"

    def test_restore_custom_uses_pg_restore(self, tmp_path: Path) -> None:
        path = tmp_path / "app.dump"
        invocation = PostgresDriver(make_config())._native_restore_invocation(path)
        assert invocation.argv[0] == "/opt/pg/bin/pg_restore"
        assert "--single-transaction" in invocation.argv
        assert invocation.argv[-1] == str(path)

    def test_restore_plain_uses_psql(self, tmp_path: Path) -> None:
        path = tmp_path / "app.sql"
        invocation = PostgresDriver(make_config())._native_restore_invocation(path)
        assert invocation.argv[0] == "/opt/pg/bin/psql"
        assert invocation.argv[-2:] == ["-f", str(path)]
        assert "ON_ERROR_STOP=1" in invocation.argv

    @pytest.mark.asyncio
    async def test_native_backup_runs_tool(self, tmp_path: Path) -> None:
        out = tmp_path / "nested" / "app.sql"
        with patch("db_bridge.drivers.tools.run_invocation", new=AsyncMock()) as run:
            result = await PostgresDriver(make_config()).native_backup(out)

        assert result == out
        assert out.parent.is_dir()
        invocation = run.await_args.args[0]
        assert invocation.argv[0] == "/opt/pg/bin/pg_dump"

    @pytest.mark.asyncio
    async def test_native_restore_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await PostgresDriver(make_config()).native_restore(tmp_path / "absent.sql")

    def test_missing_password_env_fails_before_spawn(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("DB_BRIDGE_TEST_PG_PW", raising=False)
        driver = PostgresDriver(make_config(password_env="DB_BRIDGE_TEST_PG_PW"))
        with pytest.raises(ConfigurationError):
            driver._native_backup_invocation(tmp_path / "a.sql", custom=False)
