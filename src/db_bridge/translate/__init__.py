"""Dialect translation between supported engines.

Usage:
    from db_bridge.translate import rewrite

    postgres_sql = rewrite(sqlite_sql, "sqlite", "postgres")
"""

from db_bridge.translate.dialect import (
    RULES,
    RULESET_VERSION,
    RewriteRule,
    rewrite,
    rules_for,
)

__all__ = [
    "RULES",
    "RULESET_VERSION",
    "RewriteRule",
    "rewrite",
    "rules_for",
]
