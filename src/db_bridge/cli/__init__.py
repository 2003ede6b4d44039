"""CLI for cross-engine backup, restore and migration.

Usage:
    db-bridge profiles
    db-bridge check prod local
    db-bridge backup prod -o backups/prod.sql --schema-only
    db-bridge backup prod --native --custom
    db-bridge restore local backups/prod.sql --yes
    db-bridge translate backups/prod.sql --from postgres --to sqlite -o local.sql
    db-bridge migrate --from prod --to local --yes

Commands:
    profiles   - List profiles defined in db.toml
    check      - Probe connectivity of one or more profiles
    backup     - Dump a profile to a .sql file (or with the engine's own tool)
    restore    - Replay a .sql file into a profile
    translate  - Rewrite a .sql file from one dialect to another
    migrate    - Copy one profile into another, translating as needed

Global options:
    --config PATH   db.toml location (default: $DB_BRIDGE_CONFIG or ./db.toml)
    --verbose       Log progress details to stderr
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from db_bridge.config.loader import load_db_config
from db_bridge.config.models import ENGINE_KINDS
from db_bridge.dump.models import BackupOptions, BackupProgress, DumpDocument, RestoreProgress
from db_bridge.errors import DbBridgeError
from db_bridge.factory import create_driver, get_profile
from db_bridge.migration.orchestrator import MigrationProgress, migrate
from db_bridge.translate.dialect import rewrite

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    """Route library logging through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _progress_bar() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


def _default_backup_path(profile_name: str, suffix: str) -> Path:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return Path(f"{profile_name}-{stamp}{suffix}")


def _print_error(e: Exception) -> None:
    console.print(f"[bold red]x[/bold red] {escape(str(e))}")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_check(args: argparse.Namespace) -> int:
    """Probe each profile and print a status table.

    Returns:
        0 if every profile is reachable, 1 otherwise.
    """
    settings = load_db_config(args.config)

    table = Table(title="Connectivity", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Version")
    table.add_column("Latency")
    table.add_column("Error")

    all_ok = True
    for name in args.profiles:
        profile = get_profile(name, args.config)
        driver = create_driver(profile, connect_timeout=settings.connect_timeout)
        try:
            health = await driver.health_check()
        finally:
            await driver.close()

        all_ok = all_ok and health.ok
        table.add_row(
            f"[bold cyan]{name}[/bold cyan]",
            profile.kind,
            "[green]OK[/green]" if health.ok else "[red]FAILED[/red]",
            health.version or "",
            f"{health.latency_ms:.1f} ms" if health.latency_ms is not None else "",
            escape(health.error or ""),
        )

    console.print(table)
    return 0 if all_ok else 1


async def _async_backup(args: argparse.Namespace) -> int:
    """Dump a profile to a file.

    Returns:
        0 on success, 1 on failure.
    """
    settings = load_db_config(args.config)
    profile = get_profile(args.profile, args.config)
    driver = create_driver(profile, connect_timeout=settings.connect_timeout)

    try:
        if args.native:
            suffix = ".dump" if args.custom else ".sql"
            output = Path(args.output) if args.output else _default_backup_path(args.profile, suffix)
            console.print(f"Running native backup of [bold cyan]{args.profile}[/bold cyan]...", style="dim")
            await driver.native_backup(output, custom=args.custom)
            console.print(f"[bold green]v[/bold green] Backup written to {output}")
            return 0

        output = Path(args.output) if args.output else _default_backup_path(args.profile, ".sql")
        options = BackupOptions(schema_only=args.schema_only, data_only=args.data_only)

        with _progress_bar() as progress:
            task = progress.add_task(f"Dumping {args.profile}", total=100)

            def on_progress(snapshot: BackupProgress) -> None:
                label = snapshot.current_table or "done"
                progress.update(task, completed=snapshot.percentage, description=f"Dumping {label}")

            document = await driver.dump(options, on_progress=on_progress)

        document.write(output)
        console.print(
            f"[bold green]v[/bold green] Dumped {len(document.tables)} tables "
            f"from [bold cyan]{args.profile}[/bold cyan] to {output}"
        )
        return 0
    finally:
        await driver.close()


async def _async_restore(args: argparse.Namespace) -> int:
    """Replay a dump file into a profile.

    Returns:
        0 on success, 1 on failure or when ``--yes`` was not given.
    """
    source = Path(args.file)
    if not source.exists():
        console.print(f"[red]Error: File not found: {source}[/red]")
        return 1

    settings = load_db_config(args.config)
    profile = get_profile(args.profile, args.config)

    if not args.yes:
        console.print(
            f"[yellow]Restoring {source} will drop and recreate tables in "
            f"profile '{args.profile}' ({profile.label}).[/yellow]"
        )
        console.print("[dim]Re-run with[/dim] [cyan]--yes[/cyan] [dim]to proceed.[/dim]")
        return 1

    driver = create_driver(profile, connect_timeout=settings.connect_timeout)
    try:
        if args.native:
            await driver.native_restore(source)
            console.print(f"[bold green]v[/bold green] Restored {source} into [bold cyan]{args.profile}[/bold cyan]")
            return 0

        document = DumpDocument.read(source, kind=profile.kind)
        with _progress_bar() as progress:
            task = progress.add_task(f"Restoring into {args.profile}", total=100)

            def on_progress(snapshot: RestoreProgress) -> None:
                progress.update(
                    task,
                    completed=snapshot.percentage,
                    description=(
                        f"Statement {snapshot.current_statement}/{snapshot.total_statements}"
                    ),
                )

            executed = await driver.restore(document, on_progress=on_progress)

        console.print(
            f"[bold green]v[/bold green] Executed {executed} statements "
            f"in [bold cyan]{args.profile}[/bold cyan]"
        )
        return 0
    finally:
        await driver.close()


async def _async_migrate(args: argparse.Namespace) -> int:
    """Copy one profile into another.

    Returns:
        0 on success, 1 on failure or when ``--yes`` was not given.
    """
    settings = load_db_config(args.config)
    source = get_profile(args.source, args.config)
    target = get_profile(args.target, args.config)

    if not args.yes:
        console.print(
            f"[yellow]Migrating {args.source} ({source.label}) into "
            f"{args.target} ({target.label}) will drop and recreate tables "
            f"in the target.[/yellow]"
        )
        console.print("[dim]Re-run with[/dim] [cyan]--yes[/cyan] [dim]to proceed.[/dim]")
        return 1

    options = BackupOptions(schema_only=args.schema_only, data_only=args.data_only)

    with _progress_bar() as progress:
        task = progress.add_task("Starting", total=100)

        def on_progress(snapshot: MigrationProgress) -> None:
            if snapshot.backup is not None:
                label = snapshot.backup.current_table or "done"
                progress.update(task, completed=snapshot.backup.percentage, description=f"Dumping {label}")
            elif snapshot.restore is not None:
                progress.update(
                    task,
                    completed=snapshot.restore.percentage,
                    description=(
                        f"Restoring {snapshot.restore.current_statement}"
                        f"/{snapshot.restore.total_statements}"
                    ),
                )
            else:
                progress.update(task, completed=0, description=snapshot.message)

        result = await migrate(
            source,
            target,
            options=options,
            on_progress=on_progress,
            work_dir=settings.work_dir,
            connect_timeout=settings.connect_timeout,
        )

    table = Table(title="Migration Complete", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Source", f"{result.source} ({source.kind} {result.source_version or ''})".rstrip())
    table.add_row("Target", f"{result.target} ({target.kind} {result.target_version or ''})".rstrip())
    table.add_row("Tables", str(len(result.tables)))
    table.add_row("Statements", str(result.statements_executed))
    table.add_row("Translated", "yes" if result.translated else "no")
    table.add_row("Duration", f"{result.duration_ms / 1000:.2f}s")
    console.print(table)
    return 0


# ============================================================================
# Command handlers
# ============================================================================


def _run(coro) -> int:
    """Run an async command, reporting library errors as exit code 1."""
    try:
        return asyncio.run(coro)
    except DbBridgeError as e:
        if e.stage:
            console.print(f"[bold red]x[/bold red] Failed during {e.stage}: {escape(str(e))}")
        else:
            _print_error(e)
        return 1
    except FileNotFoundError as e:
        _print_error(e)
        return 1


def cmd_profiles(args: argparse.Namespace) -> int:
    """List profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml is missing or invalid.
    """
    try:
        config = load_db_config(args.config)
    except (FileNotFoundError, DbBridgeError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Kind")
    table.add_column("Location")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        table.add_row(f"[bold cyan]{name}[/bold cyan]", profile.kind, profile.label, profile.description)

    console.print(table)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Probe connectivity.  Wraps the async implementation with ``asyncio.run()``."""
    return _run(_async_check(args))


def cmd_backup(args: argparse.Namespace) -> int:
    """Back up a profile.  Wraps the async implementation with ``asyncio.run()``."""
    if args.custom and not args.native:
        console.print("[red]Error: --custom requires --native[/red]")
        return 1
    return _run(_async_backup(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore into a profile.  Wraps the async implementation with ``asyncio.run()``."""
    return _run(_async_restore(args))


def cmd_translate(args: argparse.Namespace) -> int:
    """Rewrite a dump file from one dialect to another.

    Writes to ``--output`` when given, otherwise to stdout.

    Returns:
        0 on success, 1 on failure.
    """
    source = Path(args.file)
    try:
        sql = source.read_text(encoding="utf-8")
        converted = rewrite(sql, args.source_kind, args.target_kind)
    except (OSError, DbBridgeError) as e:
        _print_error(e)
        return 1

    if args.output:
        Path(args.output).write_text(converted, encoding="utf-8")
        console.print(
            f"[bold green]v[/bold green] Translated {source} "
            f"({args.source_kind} -> {args.target_kind}) to {args.output}"
        )
    else:
        sys.stdout.write(converted)
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    """Migrate between profiles.  Wraps the async implementation with ``asyncio.run()``."""
    return _run(_async_migrate(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog="db-bridge",
        description="Cross-engine database backup, restore and migration",
    )
    parser.add_argument("--config", default=None, help="Path to db.toml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    # check command
    p_check = subparsers.add_parser("check", help="Probe connectivity of profiles")
    p_check.add_argument("profiles", nargs="+", help="Profile names")
    p_check.set_defaults(func=cmd_check)

    # backup command
    p_backup = subparsers.add_parser("backup", help="Dump a profile to a file")
    p_backup.add_argument("profile", help="Profile to back up")
    p_backup.add_argument("--output", "-o", help="Output file (default: <profile>-<timestamp>.sql)")
    p_backup.add_argument("--schema-only", action="store_true", help="Dump table definitions only")
    p_backup.add_argument("--data-only", action="store_true", help="Dump rows only")
    p_backup.add_argument("--native", action="store_true", help="Use the engine's own dump tool")
    p_backup.add_argument("--custom", action="store_true", help="Compressed custom format (PostgreSQL, with --native)")
    p_backup.set_defaults(func=cmd_backup)

    # restore command
    p_restore = subparsers.add_parser("restore", help="Replay a dump file into a profile")
    p_restore.add_argument("profile", help="Profile to restore into")
    p_restore.add_argument("file", help="Dump file")
    p_restore.add_argument("--native", action="store_true", help="Use the engine's own restore tool")
    p_restore.add_argument("--yes", "-y", action="store_true", help="Confirm overwriting tables")
    p_restore.set_defaults(func=cmd_restore)

    # translate command
    p_translate = subparsers.add_parser("translate", help="Rewrite a dump between dialects")
    p_translate.add_argument("file", help="Dump file")
    p_translate.add_argument("--from", dest="source_kind", required=True, choices=ENGINE_KINDS)
    p_translate.add_argument("--to", dest="target_kind", required=True, choices=ENGINE_KINDS)
    p_translate.add_argument("--output", "-o", help="Output file (default: stdout)")
    p_translate.set_defaults(func=cmd_translate)

    # migrate command
    p_migrate = subparsers.add_parser("migrate", help="Copy one profile into another")
    p_migrate.add_argument("--from", "-f", dest="source", required=True, help="Source profile")
    p_migrate.add_argument("--to", "-t", dest="target", required=True, help="Target profile")
    p_migrate.add_argument("--schema-only", action="store_true", help="Copy table definitions only")
    p_migrate.add_argument("--data-only", action="store_true", help="Copy rows only")
    p_migrate.add_argument("--yes", "-y", action="store_true", help="Confirm overwriting the target")
    p_migrate.set_defaults(func=cmd_migrate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to the command handler.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
