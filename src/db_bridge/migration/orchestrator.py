"""Dump-translate-restore migration between two databases.

A run moves through a fixed sequence of stages::

    idle -> probing-source -> probing-target -> dumping -> translating
         -> restoring -> complete

Any failure moves the run to ``failed`` and re-raises the error with
``error.stage`` set to the stage that failed.  Both drivers are closed and
the transient ``.sql`` artifact is deleted when the run ends, whatever the
outcome (including cancellation).

Usage:
    from db_bridge.migration import migrate

    result = await migrate(source_config, target_config, on_progress=print)
    print(f"{result.statements_executed} statements in {result.duration_ms}ms")
"""

import logging
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from db_bridge.config.models import DEFAULT_CONNECT_TIMEOUT, ConnectionConfig
from db_bridge.drivers.base import DatabaseDriver
from db_bridge.dump.models import BackupOptions, BackupProgress, DumpDocument, RestoreProgress
from db_bridge.errors import ConfigurationError, ConnectivityError, DbBridgeError
from db_bridge.factory import create_driver
from db_bridge.translate.dialect import rewrite

logger = logging.getLogger(__name__)

MigrationStage = Literal[
    "idle",
    "probing-source",
    "probing-target",
    "dumping",
    "translating",
    "restoring",
    "complete",
    "failed",
]


class MigrationProgress(BaseModel):
    """Progress snapshot for a migration run.

    ``backup`` is set while dumping and ``restore`` while restoring; stage
    transitions carry only ``stage`` and ``message``.
    """

    model_config = ConfigDict(frozen=True)

    stage: MigrationStage
    backup: BackupProgress | None = None
    restore: RestoreProgress | None = None
    message: str = ""


class MigrationResult(BaseModel):
    """Terminal summary of a successful migration."""

    source: str
    target: str
    stage: MigrationStage = "complete"
    tables: list[str] = []
    statements_executed: int = 0
    translated: bool = False
    source_version: str | None = None
    target_version: str | None = None
    duration_ms: float = 0.0


MigrationCallback = Callable[[MigrationProgress], None]

_STAGE_MESSAGES = {
    "probing-source": "Checking source connection",
    "probing-target": "Checking target connection",
    "dumping": "Dumping source database",
    "translating": "Translating dump",
    "restoring": "Restoring into target database",
    "complete": "Migration complete",
}


class MigrationRun:
    """One source-to-target migration.

    A run is single-use: call ``run()`` once.  It shares no state with other
    runs, so independent runs may execute concurrently.

    Args:
        source: Database to copy from.
        target: Database to copy into.  Tables present in the dump are
            dropped and recreated.
        options: Schema/data selection for the dump.
        on_progress: Receives a ``MigrationProgress`` on each stage change
            and for every forwarded backup/restore snapshot.
        driver_factory: Callable building a driver from a config; accepts a
            ``connect_timeout`` keyword.
        work_dir: Directory for the transient artifact (default: system
            temp dir).
        connect_timeout: Seconds allowed for each connectivity probe.
    """

    def __init__(
        self,
        source: ConnectionConfig,
        target: ConnectionConfig,
        *,
        options: BackupOptions | None = None,
        on_progress: MigrationCallback | None = None,
        driver_factory: Callable[..., DatabaseDriver] = create_driver,
        work_dir: str | Path | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self.source = source
        self.target = target
        self.options = options or BackupOptions()
        self.on_progress = on_progress
        self.driver_factory = driver_factory
        self.work_dir = Path(work_dir) if work_dir is not None else None
        self.connect_timeout = connect_timeout

        self.stage: MigrationStage = "idle"
        self.artifact_path: Path | None = None
        self.result: MigrationResult | None = None

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _notify(self, snapshot: MigrationProgress) -> None:
        if self.on_progress is not None:
            self.on_progress(snapshot)

    def _enter(self, stage: MigrationStage, message: str | None = None) -> None:
        self.stage = stage
        text = message if message is not None else _STAGE_MESSAGES.get(stage, "")
        logger.info(f"Migration {self.source.label} -> {self.target.label}: {text}")
        self._notify(MigrationProgress(stage=stage, message=text))

    def _forward_backup(self, snapshot: Any) -> None:
        self._notify(MigrationProgress(stage="dumping", backup=snapshot))

    def _forward_restore(self, snapshot: Any) -> None:
        self._notify(MigrationProgress(stage="restoring", restore=snapshot))

    # ------------------------------------------------------------------
    # Artifact
    # ------------------------------------------------------------------

    def _write_artifact(self, document: DumpDocument) -> Path:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="db-bridge-", suffix=".sql", dir=self.work_dir)
        os.close(fd)
        self.artifact_path = Path(name)
        return document.write(self.artifact_path)

    def _remove_artifact(self) -> None:
        if self.artifact_path is not None:
            self.artifact_path.unlink(missing_ok=True)
            logger.debug(f"Removed migration artifact {self.artifact_path}")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> MigrationResult:
        """Execute the migration.

        Returns:
            ``MigrationResult`` with ``stage == "complete"``.

        Raises:
            ConfigurationError: If source and target are the same database
                (checked before any connection is opened) or a config is
                incomplete.
            ConnectivityError: If either probe fails.
            DumpError, TranslationError, RestoreError: From the stage that
                failed.
        """
        if self.stage != "idle":
            raise RuntimeError("MigrationRun.run() can only be called once")

        start = time.perf_counter()
        source_driver: DatabaseDriver | None = None
        target_driver: DatabaseDriver | None = None

        try:
            if self.source.identity() == self.target.identity():
                raise ConfigurationError(
                    f"Source and target are the same database: {self.source.label}"
                )

            source_driver = self.driver_factory(self.source, connect_timeout=self.connect_timeout)
            target_driver = self.driver_factory(self.target, connect_timeout=self.connect_timeout)

            self._enter("probing-source")
            source_health = await source_driver.health_check(self.connect_timeout)
            if not source_health.ok:
                raise ConnectivityError(f"Source unreachable: {source_health.error}")

            self._enter("probing-target")
            target_health = await target_driver.health_check(self.connect_timeout)
            if not target_health.ok:
                raise ConnectivityError(f"Target unreachable: {target_health.error}")

            self._enter("dumping")
            document = await source_driver.dump(self.options, on_progress=self._forward_backup)
            artifact = self._write_artifact(document)
            logger.debug(f"Dump of {len(document.tables)} tables written to {artifact}")

            self._enter("translating")
            sql = DumpDocument.read(artifact, kind=self.source.kind).text
            translated = self.source.kind != self.target.kind
            if translated:
                sql = rewrite(sql, self.source.kind, self.target.kind)

            self._enter("restoring")
            executed = await target_driver.restore(sql, on_progress=self._forward_restore)

            self.result = MigrationResult(
                source=self.source.name or self.source.label,
                target=self.target.name or self.target.label,
                tables=document.tables,
                statements_executed=executed,
                translated=translated,
                source_version=source_health.version,
                target_version=target_health.version,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            self._enter(
                "complete",
                f"Migrated {len(document.tables)} tables ({executed} statements)",
            )
            return self.result

        except Exception as e:
            failed_stage = self.stage
            if isinstance(e, DbBridgeError):
                e.stage = failed_stage
            logger.error(f"Migration failed during {failed_stage}: {e}")
            try:
                self._enter("failed", str(e))
            except Exception as callback_error:
                logger.warning(f"Progress callback failed while reporting failure: {callback_error}")
            raise

        finally:
            for driver in (source_driver, target_driver):
                if driver is None:
                    continue
                try:
                    await driver.close()
                except Exception as close_error:
                    logger.warning(f"Failed to close {driver!r}: {close_error}")
            self._remove_artifact()


async def migrate(
    source: ConnectionConfig,
    target: ConnectionConfig,
    *,
    options: BackupOptions | None = None,
    on_progress: MigrationCallback | None = None,
    driver_factory: Callable[..., DatabaseDriver] = create_driver,
    work_dir: str | Path | None = None,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> MigrationResult:
    """Copy ``source`` into ``target``, translating between dialects as needed.

    See ``MigrationRun`` for the arguments and stage sequence.
    """
    run = MigrationRun(
        source,
        target,
        options=options,
        on_progress=on_progress,
        driver_factory=driver_factory,
        work_dir=work_dir,
        connect_timeout=connect_timeout,
    )
    return await run.run()
