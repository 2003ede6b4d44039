"""Best-effort textual translation of dump documents between SQL dialects.

Translation is driven by ``RULES``, an ordered table of regex substitutions
keyed by (source, target) engine pair.  Rules for a pair are applied in
table order, case-insensitively and in multiline mode, to the whole
document.  New pairs are supported by appending rules; existing rules do
not need to change.

This is not a SQL parser and does not guarantee valid DDL for arbitrary
schemas.  Rules cover the constructs the bundled drivers emit:
auto-increment columns, boolean and timestamp type names, identifier
quoting, ``public.`` qualifiers, casts, and engine-only clauses that have
no equivalent and are stripped.

String literals and ``--`` comments are data: the document is scanned left
to right and a rule only matches where it starts outside of both.  A match
may run on over the literals that follow it (``COMMENT '...'``,
``ENUM('a','b')``, ``X'00ff'``), so row values are never rewritten.

Usage:
    from db_bridge.translate.dialect import rewrite

    sqlite_sql = rewrite(mysql_sql, "mysql", "sqlite")
"""

import logging
import re
from functools import lru_cache

from pydantic import BaseModel, ConfigDict

from db_bridge.config.models import ENGINE_KINDS
from db_bridge.errors import TranslationError

logger = logging.getLogger(__name__)

RULESET_VERSION = "1.1"

# Spans no rule may start inside: quoted strings and line comments
_SKIP = r"(?P<_skip>'(?:[^']|'')*'|--[^\n]*)"

# An ENUM/SET value list, with literals that may themselves contain ")"
_VALUE_LIST = r"\((?:'(?:[^']|'')*'|[^)'])*\)"


class RewriteRule(BaseModel):
    """One substitution applied when translating ``source`` -> ``target``."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    pattern: str
    replacement: str
    description: str = ""

    def compiled(self) -> re.Pattern:
        """Compiled pattern (case-insensitive, multiline)."""
        return _compile(self.pattern)

    def apply(self, sql: str) -> str:
        """Apply this rule to ``sql``, leaving literals and comments as they are."""

        def substitute(match: re.Match) -> str:
            if match.group("_skip") is not None:
                return match.group(0)
            return match.expand(self.replacement)

        return _compile_scanner(self.pattern).sub(substitute, sql)


@lru_cache(maxsize=None)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE | re.MULTILINE)


@lru_cache(maxsize=None)
def _compile_scanner(pattern: str) -> re.Pattern:
    # The rule's own groups come first so its \1, \2 references still hold
    return _compile(f"(?:{pattern})|{_SKIP}")


def _rules(source: str, target: str, *entries: tuple) -> list[RewriteRule]:
    """Build rules from ``(pattern, replacement, description)`` triples."""
    return [
        RewriteRule(
            source=source,
            target=target,
            pattern=pattern,
            replacement=replacement,
            description=description,
        )
        for pattern, replacement, description in entries
    ]


# MySQL-only table options and statements, stripped for every other target
_MYSQL_STRIP = (
    (r"^\s*SET\s+FOREIGN_KEY_CHECKS\s*=\s*\d+\s*;[ \t]*$", "", "drop FOREIGN_KEY_CHECKS toggles"),
    (r"\s*\bCOMMENT\s*=?\s*'(?:[^']|'')*'", "", "strip comments"),
    (r"\s*\bENGINE\s*=\s*\w+", "", "strip storage engine"),
    (r"\s*\bAUTO_INCREMENT\s*=\s*\d+", "", "strip table AUTO_INCREMENT counter"),
    (r"\s*\bDEFAULT\s+CHARSET\s*=\s*\w+", "", "strip default charset"),
    (r"\s*\b(?:CHARACTER\s+SET|CHARSET)\s*=?\s*\w+", "", "strip charset"),
    (r"\s*\bCOLLATE\s*=?\s*\w+", "", "strip collation"),
    (r"\s*\bROW_FORMAT\s*=\s*\w+", "", "strip row format"),
    (r",\s*UNIQUE\s+KEY\s+`[^`]+`\s*(\([^)]*\))", r", UNIQUE \1", "inline unique keys"),
    (r",\s*(?:FULLTEXT\s+|SPATIAL\s+)?KEY\s+`[^`]+`\s*\([^)]*\)", "", "drop inline secondary indexes"),
    (r"\s+UNSIGNED\b", "", "drop UNSIGNED"),
)

# PostgreSQL-only constructs, rewritten or stripped for every other target.
# The bytea rule must run before casts are removed.
_POSTGRES_STRIP = (
    (r"'\\x([0-9a-f]*)'::bytea", r"X'\1'", "bytea literal -> blob literal"),
    (r"^\s*SELECT\s+setval\(.*;[ \t]*$", "", "drop sequence realignment"),
    (r"\bpublic\.", "", "remove schema qualifier"),
    (
        r"::(?:character\s+varying|double\s+precision"
        r"|timestamp(?:\s+with(?:out)?\s+time\s+zone)?|\w+)(?:\[\])?",
        "",
        "remove casts",
    ),
    (r"\b(ALTER\s+TABLE)\s+ONLY\b", r"\1", "remove ONLY"),
    (r"(\bDROP\s+TABLE\b[^;]*?)\s+CASCADE\b", r"\1", "strip CASCADE"),
)

RULES: tuple[RewriteRule, ...] = tuple(
    # PostgreSQL -> SQLite
    _rules(
        "postgres", "sqlite",
        *_POSTGRES_STRIP,
        (r"\b(?:BIG|SMALL)?SERIAL\b((?:\s+NOT\s+NULL)?)\s+PRIMARY\s+KEY\b", r"INTEGER\1 PRIMARY KEY AUTOINCREMENT", "serial key -> autoincrement"),
        (r"\b(?:BIG|SMALL)?SERIAL\b", "INTEGER", "serial -> integer"),
        (r"\bBOOLEAN\b", "INTEGER", "boolean -> integer"),
        (r"\bTRUE\b", "1", "true -> 1"),
        (r"\bFALSE\b", "0", "false -> 0"),
        (r"\bTIMESTAMPTZ\b", "TEXT", "timestamptz -> text"),
        (r"\bTIMESTAMP(?:\s+WITH(?:OUT)?\s+TIME\s+ZONE)?\b", "TEXT", "timestamp -> text"),
        (r"\b\w+\[\]", "TEXT", "arrays -> text"),
        (r"\bJSONB\b", "TEXT", "jsonb -> text"),
        (r"\bBYTEA\b", "BLOB", "bytea -> blob"),
    )
    # SQLite -> PostgreSQL
    + _rules(
        "sqlite", "postgres",
        (r"\bINTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT\b", "SERIAL PRIMARY KEY", "autoincrement -> serial"),
        (r"\bAUTOINCREMENT\b", "", "drop stray AUTOINCREMENT"),
        (r"\bCREATE\s+TABLE\s+(?!IF\s+NOT\s+EXISTS\b)", "CREATE TABLE IF NOT EXISTS ", "create if not exists"),
        (r"\bDATETIME\b", "TIMESTAMP", "datetime -> timestamp"),
        (r"\bBLOB\b", "BYTEA", "blob -> bytea"),
        (r"\bX'([0-9a-f]*)'", r"'\\x\1'::bytea", "hex blob literal"),
    )
    # MySQL -> SQLite
    + _rules(
        "mysql", "sqlite",
        *_MYSQL_STRIP,
        (r"\s+AUTO_INCREMENT\b", "", "drop AUTO_INCREMENT"),
        (r"\b(?:TINY|MEDIUM|LONG)TEXT\b", "TEXT", "text variants -> text"),
        (r"\b(?:TINY|MEDIUM|LONG)BLOB\b", "BLOB", "blob variants -> blob"),
        (r"\bENUM\s*" + _VALUE_LIST, "TEXT", "enum -> text"),
        (r"`", '"', "backtick -> double quote"),
    )
    # MySQL -> PostgreSQL
    + _rules(
        "mysql", "postgres",
        *_MYSQL_STRIP,
        (r"\bBIGINT(?:\(\d+\))?((?:\s+NOT\s+NULL)?)\s+AUTO_INCREMENT\b", r"BIGSERIAL\1", "bigint auto_increment -> bigserial"),
        (r"\b(?:INT|INTEGER|MEDIUMINT|SMALLINT)(?:\(\d+\))?((?:\s+NOT\s+NULL)?)\s+AUTO_INCREMENT\b", r"SERIAL\1", "auto_increment -> serial"),
        (r"\bTINYINT\(1\)", "SMALLINT", "tinyint(1) -> smallint"),
        (r"\b(TINYINT|SMALLINT|MEDIUMINT|INT|BIGINT)\(\d+\)", r"\1", "drop display width"),
        (r"\bTINYINT\b", "SMALLINT", "tinyint -> smallint"),
        (r"\bMEDIUMINT\b", "INTEGER", "mediumint -> integer"),
        (r"\bDATETIME(?:\(\d\))?", "TIMESTAMP", "datetime -> timestamp"),
        (r"\bDOUBLE\b(?!\s+PRECISION)", "DOUBLE PRECISION", "double -> double precision"),
        (r"\b(?:TINY|MEDIUM|LONG)TEXT\b", "TEXT", "text variants -> text"),
        (r"\b(?:TINY|MEDIUM|LONG)?BLOB\b", "BYTEA", "blob -> bytea"),
        (r"\bENUM\s*" + _VALUE_LIST, "TEXT", "enum -> text"),
        (r"\bX'([0-9a-f]*)'", r"'\\x\1'::bytea", "hex blob literal"),
        (r"`", '"', "backtick -> double quote"),
    )
    # PostgreSQL -> MySQL
    + _rules(
        "postgres", "mysql",
        *_POSTGRES_STRIP,
        (r"\bBIGSERIAL\b", "BIGINT AUTO_INCREMENT", "bigserial -> auto_increment"),
        (r"\b(?:SMALL)?SERIAL\b", "INT AUTO_INCREMENT", "serial -> auto_increment"),
        (r'"', "`", "double quote -> backtick"),
        (r"\bBOOLEAN\b", "TINYINT(1)", "boolean -> tinyint(1)"),
        (r"\bTIMESTAMPTZ\b", "DATETIME", "timestamptz -> datetime"),
        (r"\bTIMESTAMP\s+WITH(?:OUT)?\s+TIME\s+ZONE\b", "DATETIME", "timestamp with zone -> datetime"),
        (r"\bBYTEA\b", "BLOB", "bytea -> blob"),
        (r"\bJSONB\b", "JSON", "jsonb -> json"),
        (r"\bUUID\b", "CHAR(36)", "uuid -> char(36)"),
        (r"\bVARCHAR\b(?!\s*\()", "TEXT", "unbounded varchar -> text"),
        (r"\b\w+\[\]", "TEXT", "arrays -> text"),
    )
    # SQLite -> MySQL
    + _rules(
        "sqlite", "mysql",
        (r"\bINTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT\b", "INTEGER PRIMARY KEY AUTO_INCREMENT", "autoincrement -> auto_increment"),
        (r"\bAUTOINCREMENT\b", "AUTO_INCREMENT", "stray autoincrement"),
        (r'"', "`", "double quote -> backtick"),
    )
)


def rules_for(source: str, target: str) -> list[RewriteRule]:
    """Rules applied when translating ``source`` -> ``target``, in order."""
    return [r for r in RULES if r.source == source and r.target == target]


def rewrite(sql: str, source: str, target: str) -> str:
    """Translate ``sql`` from the ``source`` dialect to ``target``.

    Returns ``sql`` unchanged when the engines are the same.

    Raises:
        TranslationError: If either kind is unknown, no rules exist for the
            pair, or a rule fails to apply.
    """
    for kind in (source, target):
        if kind not in ENGINE_KINDS:
            raise TranslationError(f"Unknown engine kind: {kind!r}")

    if source == target:
        return sql

    rules = rules_for(source, target)
    if not rules:
        raise TranslationError(f"No translation rules for {source} -> {target}")

    converted = sql
    for rule in rules:
        try:
            converted = rule.apply(converted)
        except (re.error, IndexError) as e:
            raise TranslationError(
                f"Rule '{rule.description or rule.pattern}' failed for "
                f"{source} -> {target}: {e}"
            ) from e

    logger.debug(f"Translated {len(sql)} chars {source} -> {target} with {len(rules)} rules")
    return converted
