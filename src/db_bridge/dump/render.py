"""Render Python values and identifiers as SQL literals for a dump.

Rendering rules (shared by every driver so dumps round-trip):

- ``None`` -> ``NULL``
- ``bool`` -> ``TRUE``/``FALSE`` on PostgreSQL, ``1``/``0`` elsewhere
- ``int``/``float``/``Decimal`` -> unquoted (non-finite floats are quoted)
- ``bytes`` -> hex literal (``X'..'``, or ``'\\x..'::bytea`` on PostgreSQL)
- dates and times -> ISO-8601 strings
- ``dict``/``list`` -> JSON strings
- anything else -> ``str(value)`` in single quotes, ``'`` doubled

Identifiers are emitted bare when they are plain lowercase names that are
not reserved words, and quoted in the engine's own style otherwise.
"""

import json
import math
import re
from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from db_bridge.config.models import EngineKind

_PLAIN_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

# Words reserved in at least one supported engine
RESERVED_WORDS = frozenset({
    "all", "alter", "and", "as", "asc", "between", "by", "case", "check",
    "column", "constraint", "create", "cross", "current_date",
    "current_time", "current_timestamp", "current_user", "database",
    "default", "delete", "desc", "distinct", "drop", "else", "end",
    "exists", "false", "for", "foreign", "from", "full", "grant", "group",
    "having", "in", "index", "inner", "insert", "interval", "into", "is",
    "join", "key", "keys", "left", "like", "limit", "natural", "not",
    "null", "offset", "on", "or", "order", "outer", "primary", "range",
    "references", "right", "rows", "schema", "select", "set", "table",
    "then", "to", "true", "union", "unique", "update", "user", "using",
    "values", "when", "where", "with",
})


def quote_string(value: str) -> str:
    """Single-quote ``value``, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def quote_identifier(name: str, kind: EngineKind, force: bool = False) -> str:
    """Quote an identifier in ``kind``'s dialect when it needs quoting.

    Args:
        name: Table or column name.
        kind: Engine whose quoting style applies.
        force: Always quote (used for queries the driver issues itself).
    """
    if not force and _PLAIN_IDENTIFIER.match(name) and name not in RESERVED_WORDS:
        return name
    if kind == "mysql":
        return "`" + name.replace("`", "``") + "`"
    return '"' + name.replace('"', '""') + '"'


def render_value(value: Any, kind: EngineKind) -> str:
    """Render one column value as a SQL literal for ``kind``."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        if kind == "postgres":
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value):
            return repr(value)
        return quote_string(str(value))
    if isinstance(value, Decimal):
        if value.is_finite():
            return str(value)
        return quote_string(str(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        hex_digits = bytes(value).hex()
        if kind == "postgres":
            return f"'\\x{hex_digits}'::bytea"
        return f"X'{hex_digits}'"
    if isinstance(value, datetime):
        return quote_string(value.isoformat(sep=" "))
    if isinstance(value, (date, time)):
        return quote_string(value.isoformat())
    if isinstance(value, (dict, list)):
        return quote_string(json.dumps(value))
    return quote_string(str(value))


def render_insert(
    table: str,
    columns: Sequence[str],
    row: Sequence[Any],
    kind: EngineKind,
) -> str:
    """Render one row as an ``INSERT`` statement.

    Example:
        >>> render_insert("users", ["id", "name"], (1, None), "sqlite")
        'INSERT INTO users (id, name) VALUES (1, NULL);'
    """
    column_list = ", ".join(quote_identifier(c, kind) for c in columns)
    values = ", ".join(render_value(v, kind) for v in row)
    return f"INSERT INTO {quote_identifier(table, kind)} ({column_list}) VALUES ({values});"
