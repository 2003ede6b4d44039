"""Error taxonomy for db-bridge.

Every failure raised by the core derives from ``DbBridgeError`` and keeps
the lower-level driver or process message in its text.  ``health_check()``
is the one operation that never raises: it folds failures into a
``HealthResult`` instead.

Usage:
    from db_bridge.errors import RestoreError

    try:
        await driver.restore(document)
    except RestoreError as e:
        print(f"Statement {e.index} failed: {e.statement}")
"""


class DbBridgeError(Exception):
    """Base class for all db-bridge errors.

    Attributes:
        stage: Migration stage the error was raised in, set by the
            orchestrator when the error escapes a migration run.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.stage: str | None = None


class ConfigurationError(DbBridgeError):
    """Invalid or incomplete configuration (missing fields, same source and target)."""


class ProfileNotFoundError(ConfigurationError):
    """Raised when a named profile is not present in db.toml."""


class ConnectivityError(DbBridgeError):
    """Host unreachable, authentication rejected, or probe timed out."""


class DumpError(DbBridgeError):
    """Table enumeration or row serialization failed.

    Attributes:
        table: Name of the table being dumped, or ``None`` when the
            failure happened while enumerating tables.
    """

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class TranslationError(DbBridgeError):
    """The dialect rewriter could not translate the document."""


class RestoreError(DbBridgeError):
    """A statement failed while replaying a dump.

    Attributes:
        index: 1-based position of the failing statement, or ``None`` when
            the failure is not tied to one statement.
        statement: Text of the failing statement.
    """

    def __init__(
        self,
        message: str,
        index: int | None = None,
        statement: str | None = None,
    ) -> None:
        super().__init__(message)
        self.index = index
        self.statement = statement


class ToolError(DbBridgeError):
    """An external CLI tool (pg_dump, mysqldump, sqlite3, ...) failed."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr
