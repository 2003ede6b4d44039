"""Shared fixtures: SQLite files built with the stdlib driver, and a fake async engine."""

import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from db_bridge.config.models import ConnectionConfig

USERS_SCHEMA = """
    CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, score REAL, avatar BLOB);
    INSERT INTO users (name, score, avatar) VALUES ('Ann', 1.5, X'0102');
    INSERT INTO users (name, score, avatar) VALUES ('O''Brien; Jr', NULL, NULL);
    CREATE TABLE "order" (id INTEGER PRIMARY KEY, note TEXT);
    INSERT INTO "order" VALUES (1, 'it''s -- not a comment');
    CREATE VIEW v_users AS SELECT name FROM users;
"""


def build_sqlite(path: Path, script: str) -> Path:
    """Create a SQLite file at ``path`` by running ``script``."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(script)
        conn.commit()
    finally:
        conn.close()
    return path


def fetch_all(path: Path, sql: str) -> list[tuple]:
    """Run a query against a SQLite file with the stdlib driver."""
    conn = sqlite3.connect(path)
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


def table_names(path: Path) -> list[str]:
    rows = fetch_all(
        path,
        "SELECT name FROM sqlite_master WHERE type = 'table' "
        "AND name NOT LIKE 'sqlite_%' ORDER BY name",
    )
    return [row[0] for row in rows]


@pytest.fixture
def source_db(tmp_path: Path) -> Path:
    """SQLite file with ``users`` and ``order`` tables and a view."""
    return build_sqlite(tmp_path / "source.db", USERS_SCHEMA)


@pytest.fixture
def source_config(source_db: Path) -> ConnectionConfig:
    return ConnectionConfig(kind="sqlite", name="source", path=str(source_db))


@pytest.fixture
def target_config(tmp_path: Path) -> ConnectionConfig:
    """Config for a SQLite file that does not exist yet."""
    return ConnectionConfig(
        kind="sqlite",
        name="target",
        path=str(tmp_path / "target.db"),
        create_if_missing=True,
    )


# ============================================================================
# Fake SQLAlchemy engine for server drivers
# ============================================================================


class FakeRow(tuple):
    """Row that supports both positional access and ``_mapping``."""

    def __new__(cls, mapping: dict):
        row = super().__new__(cls, mapping.values())
        row._mapping = mapping
        return row


class FakeResult:
    def __init__(self, rows=(), keys=()):
        self._rows = list(rows)
        self._keys = list(keys)

    def __iter__(self):
        return iter(self._rows)

    def keys(self):
        return self._keys

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def scalar(self):
        return self._rows[0][0] if self._rows else None


class FakeConnection:
    """Routes every statement to ``handler(sql, params)`` and records it."""

    def __init__(self, handler):
        self.handler = handler
        self.executed: list[str] = []

    async def execute(self, clause, params=None):
        sql = str(clause)
        self.executed.append(sql)
        return self.handler(sql, params or {})

    async def exec_driver_sql(self, sql, parameters=None, execution_options=None):
        self.executed.append(sql)
        return self.handler(sql, {})


class FakeEngine:
    """Stand-in for ``AsyncEngine`` with ``connect``/``begin``/``dispose``."""

    def __init__(self, handler=None):
        self.conn = FakeConnection(handler or (lambda sql, params: FakeResult()))
        self.committed = False
        self.rolled_back = False
        self.disposed = False

    @asynccontextmanager
    async def connect(self):
        yield self.conn

    @asynccontextmanager
    async def begin(self):
        try:
            yield self.conn
        except BaseException:
            self.rolled_back = True
            raise
        self.committed = True

    async def dispose(self):
        self.disposed = True
