"""Engine driver protocol and the shared SQLAlchemy implementation.

Defines the ``DatabaseDriver`` Protocol that every engine driver
implements, plus ``SqlAlchemyDriver``, the async base class the bundled
PostgreSQL, MySQL and SQLite drivers build on.  All methods are
``async def``.

Usage:
    from db_bridge.drivers.base import DatabaseDriver

    async def snapshot(driver: DatabaseDriver) -> str:
        health = await driver.health_check()
        if not health.ok:
            raise RuntimeError(health.error)
        document = await driver.dump()
        await driver.close()
        return document.text
"""

import asyncio
import logging
import ssl
import time
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from db_bridge.config.models import DEFAULT_CONNECT_TIMEOUT, ConnectionConfig, EngineKind
from db_bridge.drivers import tools
from db_bridge.dump.models import (
    BackupOptions,
    BackupProgress,
    DumpDocument,
    ProgressCallback,
    RestoreProgress,
    percent,
)
from db_bridge.dump.render import quote_identifier, render_insert
from db_bridge.dump.tokenizer import split_statements
from db_bridge.errors import DbBridgeError, DumpError, RestoreError

logger = logging.getLogger(__name__)


class HealthResult(BaseModel):
    """Outcome of a connectivity probe."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    version: str | None = None
    latency_ms: float | None = None
    error: str | None = None


class DatabaseDriver(Protocol):
    """Engine driver interface used by the orchestrator and the CLI.

    A driver instance is bound to one ``ConnectionConfig`` and is not
    shared between concurrent runs.
    """

    kind: EngineKind
    config: ConnectionConfig

    async def health_check(self, timeout: float | None = None) -> HealthResult:
        """Open a connection, run the version query, and report the outcome.

        Never raises: failures, including the timeout, are reported as
        ``HealthResult(ok=False, error=...)``.  Connections opened by the
        probe are released before returning.
        """
        ...

    async def dump(
        self,
        options: BackupOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DumpDocument:
        """Serialize user tables to a dump document.

        Raises:
            DumpError: If table enumeration or row serialization fails.
        """
        ...

    async def restore(
        self,
        dump: str | DumpDocument,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """Replay a dump, statement by statement, in one transaction.

        Returns:
            Number of statements executed.

        Raises:
            RestoreError: Naming the 1-based index and text of the failing
                statement.
        """
        ...

    async def native_backup(self, path: str | Path, custom: bool = False) -> Path:
        """Back up with the engine's own CLI tool and return the file path."""
        ...

    async def native_restore(self, path: str | Path) -> None:
        """Restore a file produced by ``native_backup``."""
        ...

    async def close(self) -> None:
        """Dispose of the connection pool.  Safe to call more than once."""
        ...


def create_async_engine_pooled(database_url: Any, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings:

    - ``pool_size=5``: Reasonable default for typical workloads.
    - ``max_overflow=10``: Allow burst connections.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    Passing ``poolclass=NullPool`` drops the sizing options, which only
    apply to queue pools.

    Args:
        database_url: ``sqlalchemy.engine.URL`` or URL string with an async
            driver scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}
    if merged.get("poolclass") is NullPool:
        merged.pop("pool_size", None)
        merged.pop("max_overflow", None)

    return create_async_engine(database_url, **merged)


def unverified_ssl_context() -> ssl.SSLContext:
    """TLS context that encrypts without verifying the server certificate."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def error_message(exc: BaseException) -> str:
    """Driver-level message for ``exc``, unwrapping SQLAlchemy's DBAPI wrapper."""
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).strip()
    return message or type(exc).__name__


def _emit(on_progress: ProgressCallback | None, snapshot: Any) -> None:
    if on_progress is not None:
        on_progress(snapshot)


class SqlAlchemyDriver:
    """Shared driver implementation over a SQLAlchemy ``AsyncEngine``.

    Subclasses set ``kind``, ``version_query`` and
    ``supports_transactional_ddl``, and implement the engine-specific hooks:
    ``_create_engine``, ``_list_tables``, ``_create_statement`` and the
    native tool invocations.

    The engine is created lazily on first use so constructing a driver
    never touches the network.

    Args:
        config: Connection settings, read-only for the driver's lifetime.
        connect_timeout: Seconds allowed for opening a connection.
        **engine_kwargs: Extra keyword arguments for the engine factory.
    """

    kind: EngineKind
    version_query: str = "SELECT version()"
    supports_transactional_ddl: bool = True

    def __init__(
        self,
        config: ConnectionConfig,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        **engine_kwargs: Any,
    ) -> None:
        self.config = config
        self.connect_timeout = connect_timeout
        self._engine_kwargs = engine_kwargs
        self._engine: AsyncEngine | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config.label!r})"

    @property
    def engine(self) -> AsyncEngine:
        """Pooled engine used by ``dump`` and ``restore``."""
        if self._engine is None:
            self._engine = self._create_engine(probe=False)
        return self._engine

    # ------------------------------------------------------------------
    # Engine-specific hooks
    # ------------------------------------------------------------------

    def _create_engine(self, probe: bool = False) -> AsyncEngine:
        """Build an engine; ``probe=True`` builds an unpooled one for health checks."""
        raise NotImplementedError

    async def _list_tables(self, conn: AsyncConnection) -> list[str]:
        raise NotImplementedError

    async def _create_statement(self, conn: AsyncConnection, table: str) -> str:
        raise NotImplementedError

    def _drop_statement(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {quote_identifier(table, self.kind)};"

    def _dump_preamble(self, options: BackupOptions) -> list[str]:
        """Statements emitted before the first table."""
        return []

    def _dump_postamble(self, options: BackupOptions) -> list[str]:
        """Statements emitted after the last table."""
        return []

    async def _after_table_data(self, conn: AsyncConnection, table: str) -> list[str]:
        """Statements emitted after a table's rows (sequence realignment)."""
        return []

    def _prepare_row(self, row: Sequence[Any]) -> Sequence[Any]:
        return row

    def _parse_version(self, raw: Any) -> str:
        return str(raw)

    def _native_backup_invocation(self, path: Path, custom: bool) -> tools.ToolInvocation:
        raise NotImplementedError

    def _native_restore_invocation(self, path: Path) -> tools.ToolInvocation:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Execution helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _execute(conn: AsyncConnection, sql: str):
        """Run ``sql`` verbatim on the DBAPI cursor.

        ``no_parameters`` keeps ``%`` and ``:name`` inside dump literals from
        being read as bind parameter markers.
        """
        return await conn.exec_driver_sql(
            sql, execution_options={"no_parameters": True}
        )

    # ------------------------------------------------------------------
    # Health Check
    # ------------------------------------------------------------------

    async def _probe(self, engine: AsyncEngine) -> str:
        async with engine.connect() as conn:
            result = await self._execute(conn, self.version_query)
            return self._parse_version(result.scalar())

    async def health_check(self, timeout: float | None = None) -> HealthResult:
        """Probe connectivity with a bounded timeout.

        Args:
            timeout: Seconds to wait (default: ``connect_timeout``).

        Returns:
            ``HealthResult`` with version and latency on success, or
            ``ok=False`` and the driver's error message on failure.
        """
        if timeout is None:
            timeout = self.connect_timeout

        engine: AsyncEngine | None = None
        start = time.perf_counter()
        try:
            engine = self._create_engine(probe=True)
            version = await asyncio.wait_for(self._probe(engine), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Health check timed out for {self.config.label} after {timeout:g}s")
            return HealthResult(ok=False, error=f"Connection timed out after {timeout:g}s")
        except Exception as e:
            logger.warning(f"Health check failed for {self.config.label}: {error_message(e)}")
            return HealthResult(ok=False, error=error_message(e))
        finally:
            if engine is not None:
                await engine.dispose()

        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.debug(f"Health check ok for {self.config.label}: {version} in {latency_ms}ms")
        return HealthResult(ok=True, version=version, latency_ms=latency_ms)

    # ------------------------------------------------------------------
    # Dump
    # ------------------------------------------------------------------

    async def dump(
        self,
        options: BackupOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DumpDocument:
        """Serialize user tables to a ``DumpDocument``.

        Per table, in enumeration order: a ``-- Table:`` comment, then
        ``DROP TABLE IF EXISTS`` and the creation statement when the schema
        is included, then one ``INSERT`` per row when data is included.

        Args:
            options: Schema/data selection (default: both).
            on_progress: Receives one ``BackupProgress`` before each table
                and a final 100% snapshot.

        Raises:
            DumpError: If enumeration or serialization fails; ``table``
                names the table being dumped, if any.
        """
        options = options or BackupOptions()
        created_at = datetime.now()
        lines = [
            f"-- db-bridge dump of {self.config.label}",
            f"-- Engine: {self.kind}",
            f"-- Created: {created_at.isoformat(timespec='seconds')}",
            f"-- Contents: {_contents_label(options)}",
            "",
        ]
        lines.extend(self._dump_preamble(options))

        tables: list[str] = []
        current: str | None = None
        try:
            async with self.engine.connect() as conn:
                tables = await self._list_tables(conn)
                total = len(tables)
                logger.info(f"Dumping {total} tables from {self.config.label}")

                for index, table in enumerate(tables):
                    current = table
                    _emit(
                        on_progress,
                        BackupProgress(
                            current_table=table,
                            processed_tables=index,
                            total_tables=total,
                            percentage=percent(index, total),
                        ),
                    )
                    lines.extend(await self._dump_table(conn, table, options))
                current = None
        except DbBridgeError:
            raise
        except Exception as e:
            if current is None:
                raise DumpError(f"Failed to list tables: {error_message(e)}") from e
            raise DumpError(
                f"Failed to dump table '{current}': {error_message(e)}", table=current
            ) from e

        lines.extend(self._dump_postamble(options))
        _emit(
            on_progress,
            BackupProgress(
                current_table=None,
                processed_tables=len(tables),
                total_tables=len(tables),
                percentage=100,
            ),
        )
        return DumpDocument(
            kind=self.kind,
            text="\n".join(lines) + "\n",
            tables=tables,
            created_at=created_at,
        )

    async def _dump_table(
        self,
        conn: AsyncConnection,
        table: str,
        options: BackupOptions,
    ) -> list[str]:
        lines = ["", f"-- Table: {table}"]

        if options.include_schema:
            lines.append(self._drop_statement(table))
            lines.append(await self._create_statement(conn, table))

        if options.include_data:
            result = await self._execute(
                conn, f"SELECT * FROM {quote_identifier(table, self.kind, force=True)}"
            )
            columns = list(result.keys())
            row_count = 0
            for row in result:
                lines.append(render_insert(table, columns, self._prepare_row(row), self.kind))
                row_count += 1
            lines.extend(await self._after_table_data(conn, table))
            logger.debug(f"Dumped {row_count} rows from {table}")

        return lines

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(
        self,
        dump: str | DumpDocument,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """Execute every statement of ``dump`` in order inside one transaction.

        Engines with transactional DDL roll the whole restore back on the
        first failure.  Engines without it (MySQL) commit DDL implicitly, so
        statements before the failure may persist.

        Args:
            dump: Dump text or document.
            on_progress: Receives one ``RestoreProgress`` per executed
                statement.

        Returns:
            Number of statements executed.

        Raises:
            RestoreError: With the 1-based ``index`` and ``statement`` of the
                failing statement.
        """
        text = dump.text if isinstance(dump, DumpDocument) else dump
        statements = split_statements(text)
        total = len(statements)
        if total == 0:
            logger.info(f"Nothing to restore into {self.config.label}")
            return 0

        logger.info(f"Restoring {total} statements into {self.config.label}")
        executed = 0
        try:
            async with self.engine.begin() as conn:
                for index, statement in enumerate(statements, start=1):
                    try:
                        await self._execute(conn, statement)
                    except Exception as e:
                        raise RestoreError(
                            f"Statement {index} of {total} failed: {error_message(e)}",
                            index=index,
                            statement=statement,
                        ) from e
                    executed = index
                    _emit(
                        on_progress,
                        RestoreProgress(
                            current_statement=index,
                            total_statements=total,
                            percentage=percent(index, total),
                        ),
                    )
        except RestoreError as e:
            if not self.supports_transactional_ddl:
                logger.warning(
                    f"{self.kind} restore stopped at statement {e.index}; "
                    f"DDL before it may have been committed"
                )
            raise
        except DbBridgeError:
            raise
        except Exception as e:
            raise RestoreError(f"Restore failed: {error_message(e)}") from e

        return executed

    # ------------------------------------------------------------------
    # Native tools
    # ------------------------------------------------------------------

    async def native_backup(self, path: str | Path, custom: bool = False) -> Path:
        """Back up with the engine's CLI tool.

        Args:
            path: Output file.
            custom: Use the compressed custom format (PostgreSQL only).

        Raises:
            ConfigurationError: If ``custom`` is not supported by the engine.
            ToolError: If the tool is missing or exits non-zero.
        """
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        invocation = self._native_backup_invocation(out, custom)
        await tools.run_invocation(invocation)
        logger.info(f"Native backup of {self.config.label} written to {out}")
        return out

    async def native_restore(self, path: str | Path) -> None:
        """Restore ``path`` with the engine's CLI tool.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
            ToolError: If the tool is missing or exits non-zero.
        """
        source = Path(path)
        if not source.exists():
            raise FileNotFoundError(f"Backup file not found: {source}")
        invocation = self._native_restore_invocation(source)
        await tools.run_invocation(invocation)
        logger.info(f"Native restore of {source} into {self.config.label} complete")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Dispose of the engine and its pool."""
        if self._engine is not None:
            engine, self._engine = self._engine, None
            await engine.dispose()


def _contents_label(options: BackupOptions) -> str:
    if options.include_schema and options.include_data:
        return "schema and data"
    if options.include_schema:
        return "schema only"
    return "data only"
