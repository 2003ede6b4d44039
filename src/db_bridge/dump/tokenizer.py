"""Split a SQL script into individual statements.

The scanner tracks whether it is inside a string literal and which quote
character (``'`` or ``"``) opened it, so semicolons inside literals do not
end a statement.  ``--`` comments outside literals run to the end of the
line and are dropped.

Escaping: dumps written by db-bridge double embedded quotes (``'it''s'``)
and never use backslash escapes.  A doubled quote closes and immediately
re-opens the literal, which keeps the in-string flag correct without any
special case.  Scripts produced with MySQL's backslash escaping
(``'it\\'s'``) can be split with ``backslash_escapes=True``.
"""

from collections.abc import Iterator

QUOTE_CHARS = ("'", '"')


def iter_statements(sql: str, backslash_escapes: bool = False) -> Iterator[str]:
    """Yield trimmed statements from ``sql`` in order.

    Args:
        sql: SQL script text.
        backslash_escapes: Treat a backslash inside a literal as escaping
            the next character.

    Yields:
        Non-empty statements without their trailing semicolon.
    """
    current: list[str] = []
    quote: str | None = None
    i = 0
    n = len(sql)

    while i < n:
        char = sql[i]

        if quote is not None:
            current.append(char)
            if backslash_escapes and char == "\\" and i + 1 < n:
                current.append(sql[i + 1])
                i += 2
                continue
            if char == quote:
                quote = None
            i += 1
            continue

        if char in QUOTE_CHARS:
            quote = char
            current.append(char)
        elif char == "-" and sql.startswith("--", i):
            # Line comment: skip to end of line, keep the newline
            end = sql.find("\n", i)
            if end == -1:
                break
            i = end
            continue
        elif char == ";":
            statement = "".join(current).strip()
            if statement:
                yield statement
            current = []
        else:
            current.append(char)
        i += 1

    statement = "".join(current).strip()
    if statement:
        yield statement


def split_statements(sql: str, backslash_escapes: bool = False) -> list[str]:
    """Split ``sql`` into a list of statements.

    Returns a new list on every call, so the result can be iterated any
    number of times.

    Example:
        >>> split_statements("INSERT INTO t VALUES ('a;b', 'it''s'); INSERT INTO t VALUES (1);")
        ["INSERT INTO t VALUES ('a;b', 'it''s')", 'INSERT INTO t VALUES (1)']
    """
    return list(iter_statements(sql, backslash_escapes=backslash_escapes))
