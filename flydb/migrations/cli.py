"""CLI for database migrations.

Usage:
    python -m flydb.migrations init
    python -m flydb.migrations version --target reporting
    python -m flydb.migrations migrate --version 5
    python -m flydb.migrations rollback --version 3
    python -m flydb.migrations status
    python -m flydb.migrations create add_user_table
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from textwrap import dedent
from typing import Optional

from rich.box import ROUNDED
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import ConfigurationError, FleetConfig, load_config
from ..connection import DatabaseConnectionError, QueryError
from .base import FleetReport, MigrationError, ScriptDirectoryError
from .fleet import FleetOrchestrator
from .repository import ScriptRepository

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def print_report(console: Console, report: FleetReport) -> None:
    """Print one row per target outcome."""
    table = Table(title=f"flydb {report.operation.value}", box=ROUNDED)
    table.add_column("Target", style="bold cyan")
    table.add_column("Status")
    table.add_column("Version", justify="right")
    table.add_column("Message")

    for outcome in sorted(report.outcomes, key=lambda o: o.target):
        if outcome.timed_out:
            status = "[yellow]TIMEOUT[/yellow]"
        elif outcome.success:
            status = "[green]OK[/green]"
        else:
            status = "[red]FAILED[/red]"
        table.add_row(outcome.target, status, outcome.version or "-", escape(outcome.message))

    console.print(table)


async def cmd_init(args: argparse.Namespace, fleet: FleetOrchestrator, console: Console) -> int:
    """Create the history table."""
    report = await fleet.initialize(target=args.target)
    print_report(console, report)
    return 0 if report.success else 1


async def cmd_version(args: argparse.Namespace, fleet: FleetOrchestrator, console: Console) -> int:
    """Show current versions."""
    report = await fleet.versions(target=args.target)
    print_report(console, report)
    return 0 if report.success else 1


async def cmd_migrate(args: argparse.Namespace, fleet: FleetOrchestrator, console: Console) -> int:
    """Apply pending migrations."""
    report = await fleet.migrate(target_version=args.version, target=args.target)
    print_report(console, report)
    return 0 if report.success else 1


async def cmd_rollback(args: argparse.Namespace, fleet: FleetOrchestrator, console: Console) -> int:
    """Roll back to a version."""
    report = await fleet.rollback(target_version=args.version, target=args.target)
    print_report(console, report)
    return 0 if report.success else 1


async def cmd_status(args: argparse.Namespace, fleet: FleetOrchestrator, console: Console) -> int:
    """Show migration history of one target."""
    runner = fleet.runner(args.target)
    history = await runner.status()

    try:
        pending = await runner.pending()
    except ScriptDirectoryError as e:
        logger.warning(f"Cannot list pending scripts: {e}")
        pending = []

    table = Table(title=f"Migration status for {runner.target.name}", box=ROUNDED)
    table.add_column("", width=3)
    table.add_column("Version", justify="right")
    table.add_column("Description")
    table.add_column("Installed by")
    table.add_column("Installed on")
    table.add_column("Time (ms)", justify="right")

    for row in history:
        icon = f"[green]{escape('[x]')}[/green]" if row.success else f"[red]{escape('[!]')}[/red]"
        installed_on = row.installed_on.strftime("%Y-%m-%d %H:%M") if row.installed_on else ""
        table.add_row(
            icon,
            row.version,
            escape(row.description),
            escape(row.installed_by),
            installed_on,
            str(row.execution_time),
        )

    for script in pending:
        table.add_row(escape("[ ]"), script.version, escape(script.description), "", "", "")

    console.print(table)

    applied = sum(1 for r in history if r.success)
    failed = len(history) - applied
    console.print(
        f"Total: {len(history) + len(pending)} | Applied: {applied} | "
        f"Failed: {failed} | Pending: {len(pending)}"
    )
    return 0


def cmd_create(args: argparse.Namespace, config: FleetConfig, console: Console) -> int:
    """Create new migration (and rollback) script files."""
    directory = Path(config.scripts_path)
    directory.mkdir(parents=True, exist_ok=True)

    repository = ScriptRepository(directory, config.script_extension)
    version = repository.next_version()

    # Normalize name
    name = args.name.lower().replace("-", "_").replace(" ", "_")
    forward = directory / f"V{version}__{name}{config.script_extension}"
    rollback = directory / f"R{version}__{name}{config.script_extension}"

    for path in [forward, rollback]:
        if path.exists():
            console.print(f"Error: Script file already exists: {path}")
            return 1

    forward.write_text(f"-- Migration {version}: {name.replace('_', ' ')}\n", encoding="utf-8")
    console.print(f"Created migration: {forward}")

    if not args.no_rollback:
        rollback.write_text(
            f"-- Rollback of migration {version}: {name.replace('_', ' ')}\n",
            encoding="utf-8",
        )
        console.print(f"Created rollback: {rollback}")

    console.print(f"  Version: {version}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="flydb",
        description="Versioned SQL migrations for one or many databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=dedent("""
            Examples:
              # Create the history table on every configured database
              flydb init

              # Apply all pending migrations
              flydb migrate

              # Apply migrations up to version 5 on one database
              flydb migrate --version 5 --target reporting

              # Roll back to the previous version
              flydb rollback

              # Roll back to version 3
              flydb rollback --version 3

              # Check status
              flydb status

              # Create new migration
              flydb create add_user_table
        """),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--config", "-c",
        help="Connection file (default: $FLYDB_CONFIG or db-connections.yml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    for command, help_text in [
        ("init", "Create the history table"),
        ("version", "Show current versions"),
        ("status", "Show migration history of one database"),
    ]:
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("--target", "-t", help="Connection name (default: all / active)")

    # migrate command
    migrate_parser = subparsers.add_parser(
        "migrate",
        help="Apply pending migrations",
    )
    migrate_parser.add_argument(
        "--version",
        help="Highest version to apply (default: all)",
    )
    migrate_parser.add_argument(
        "--target", "-t",
        help="Connection name (default: all)",
    )

    # rollback command
    rollback_parser = subparsers.add_parser(
        "rollback",
        help="Roll back applied migrations",
    )
    rollback_parser.add_argument(
        "--version",
        help="Version to roll back to (default: previous version)",
    )
    rollback_parser.add_argument(
        "--target", "-t",
        help="Connection name (default: all)",
    )

    # create command
    create_parser_cmd = subparsers.add_parser(
        "create",
        help="Create a new migration script",
    )
    create_parser_cmd.add_argument(
        "name",
        help="Migration name (e.g., add_user_table)",
    )
    create_parser_cmd.add_argument(
        "--no-rollback",
        action="store_true",
        help="Do not create the matching rollback script",
    )

    return parser


async def async_main(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    """Async main entry point."""
    console = console or Console()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        console.print(f"Error: {escape(str(e))}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            console.print(f"Error: {escape(error)}")
        return 1

    fleet = FleetOrchestrator(config)

    commands = {
        "init": cmd_init,
        "version": cmd_version,
        "migrate": cmd_migrate,
        "rollback": cmd_rollback,
        "status": cmd_status,
    }

    try:
        if args.command == "create":
            return cmd_create(args, config, console)
        elif args.command in commands:
            return await commands[args.command](args, fleet, console)
        else:
            console.print(f"Unknown command: {args.command}")
            return 1
    except (ConfigurationError, MigrationError, DatabaseConnectionError, QueryError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"Error: {escape(str(e))}")
        return 1


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging(args.verbose)

    exit_code = asyncio.run(async_main(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
