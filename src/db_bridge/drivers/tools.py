"""Run engine CLI tools (pg_dump, psql, mysqldump, sqlite3, ...).

Binaries are looked up in ``$DB_BRIDGE_BIN_DIR`` when it is set, and on
``PATH`` otherwise.  Dump files are handed to the child process as open
files, never read into memory.  Standard error is always collected in full
before the exit status is judged, and a cancelled run kills the child.

Usage:
    from db_bridge.drivers.tools import ToolInvocation, run_invocation

    await run_invocation(ToolInvocation(
        argv=[tool_path("sqlite3"), "app.db", ".dump"],
        stdout_path=Path("app.sql"),
    ))
"""

import asyncio
import logging
import os
import shutil
from contextlib import ExitStack
from pathlib import Path
from typing import BinaryIO

from pydantic import BaseModel, Field

from db_bridge.errors import ToolError

logger = logging.getLogger(__name__)

BIN_DIR_ENV_VAR = "DB_BRIDGE_BIN_DIR"


class ToolInvocation(BaseModel):
    """One external tool run: arguments, extra environment, and redirections."""

    argv: list[str]
    env: dict[str, str] = Field(default_factory=dict)
    stdin_path: Path | None = None  # file fed to the tool's stdin
    stdout_path: Path | None = None  # file receiving the tool's stdout


def tool_path(name: str) -> str:
    """Resolve a tool binary name to the path that will be executed."""
    bin_dir = os.environ.get(BIN_DIR_ENV_VAR)
    if bin_dir:
        return str(Path(bin_dir) / name)
    return shutil.which(name) or name


async def run_tool(
    argv: list[str],
    stdin_data: bytes | None = None,
    env: dict[str, str] | None = None,
    stdin_file: BinaryIO | None = None,
    stdout_file: BinaryIO | None = None,
) -> bytes:
    """Run ``argv`` to completion and return its standard output.

    Args:
        argv: Program and arguments.
        stdin_data: Bytes written to the tool's stdin.
        env: Variables added to the current environment (passwords go here,
            never on the command line).
        stdin_file: Open file the child reads its stdin from directly.
        stdout_file: Open file the child writes its stdout to directly.
            Nothing is captured in memory and ``b""`` is returned.

    Returns:
        Captured standard output.

    Raises:
        ToolError: If the program cannot be started or exits non-zero.  The
            error carries the exit code and the complete standard error.
    """
    if stdin_file is not None:
        stdin = stdin_file
    elif stdin_data is not None:
        stdin = asyncio.subprocess.PIPE
    else:
        stdin = asyncio.subprocess.DEVNULL

    program = Path(argv[0]).name
    merged_env = {**os.environ, **(env or {})}

    logger.debug(f"Running {program}: {' '.join(argv[1:])}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=stdin,
            stdout=stdout_file if stdout_file is not None else asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=merged_env,
        )
    except OSError as e:
        raise ToolError(f"Failed to spawn {program}: {e}") from e

    try:
        stdout, stderr = await proc.communicate(stdin_data if stdin_file is None else None)
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        raise ToolError(
            f"{program} exited with code {proc.returncode}: {message or 'no error output'}",
            returncode=proc.returncode,
            stderr=message,
        )

    return stdout or b""


async def run_invocation(invocation: ToolInvocation) -> bytes:
    """Run a ``ToolInvocation``, streaming its stdin/stdout files.

    The files are handed to the child process as-is, so dumps of any size
    never pass through this process.  A partial output file is removed when
    the tool fails or is cancelled.
    """
    with ExitStack() as stack:
        stdin_file = None
        stdout_file = None
        if invocation.stdin_path is not None:
            stdin_file = stack.enter_context(invocation.stdin_path.open("rb"))
        if invocation.stdout_path is not None:
            stdout_file = stack.enter_context(invocation.stdout_path.open("wb"))

        try:
            return await run_tool(
                invocation.argv,
                env=invocation.env,
                stdin_file=stdin_file,
                stdout_file=stdout_file,
            )
        except BaseException:
            if stdout_file is not None:
                stdout_file.close()
                invocation.stdout_path.unlink(missing_ok=True)
            raise
