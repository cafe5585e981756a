"""CLI for snapshot backup, restore and first-boot seeding.

Usage:
    OPSNAP_DB_PROFILE=local opsnap connect
    opsnap profiles
    opsnap backup --accounts --output backups/full.json
    opsnap validate backups/full.json
    opsnap restore backups/full.json --accounts --clear-before --confirm
    opsnap stats
    opsnap clear --no-taxonomy --confirm
    opsnap init-schema
    opsnap seed

Commands:
    connect      - Check the active profile's database and lock it
    profiles     - List profiles from opsnap.toml
    backup       - Write a snapshot of the selected sections
    validate     - Parse a snapshot file without touching the database
    restore      - Restore a snapshot (plan only without --confirm)
    stats        - Show row counts per category
    clear        - Delete every row in the selected sections
    init-schema  - Create the application tables
    seed         - Seed the initial admin account and baseline taxonomy
"""

import argparse
import asyncio
import logging
import os
import sys
from importlib import resources
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from opsnap.audit import AuditActor, log_audit_sink
from opsnap.config.loader import load_config
from opsnap.config.models import AppConfig
from opsnap.factory import ProfileNotFoundError, connect, get_adapter, read_profile_lock
from opsnap.snapshot.backup import backup_snapshot, collect_stats, save_snapshot
from opsnap.snapshot.clear import clear_scope
from opsnap.snapshot.errors import SnapshotError
from opsnap.snapshot.models import Scope
from opsnap.snapshot.order import creation_order
from opsnap.snapshot.restore import restore_snapshot
from opsnap.snapshot.validator import parse_snapshot
from opsnap.startup import ensure_initialized
from opsnap.taxonomy import JsonTaxonomyProvider

console = Console()


# ============================================================================
# Shared helpers
# ============================================================================


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load(args: argparse.Namespace) -> AppConfig:
    config_path = Path(args.config) if getattr(args, "config", None) else None
    return load_config(config_path)


def _scope(args: argparse.Namespace) -> Scope:
    return Scope(
        include_taxonomy=args.taxonomy,
        include_operations=args.operations,
        include_accounts=args.accounts,
    )


def _actor() -> AuditActor:
    return AuditActor(id=os.environ.get("USER") or None)


def _taxonomy_provider(config: AppConfig) -> JsonTaxonomyProvider | None:
    if config.seed.taxonomy_file:
        return JsonTaxonomyProvider(config.seed.taxonomy_file)
    return None


def _describe_scope(scope: Scope) -> str:
    return ", ".join(sorted(s.value for s in scope.sections())) or "(nothing)"


def _add_scope_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--taxonomy",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Include tactics, techniques and sub-techniques (default: on)",
    )
    parser.add_argument(
        "--operations",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Include operations and their supporting data (default: on)",
    )
    parser.add_argument(
        "--accounts",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Include users, credentials and groups (default: off)",
    )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure.
    """
    previous_profile = read_profile_lock()
    console.print("Connecting to database...", style="dim")

    try:
        profile = await connect(args.profile, _load(args))
    except (ProfileNotFoundError, FileNotFoundError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    except Exception as e:
        console.print(f"[bold red]x[/bold red] Connection failed: {e}")
        return 1

    console.print(
        f"[bold green]v[/bold green] Connected to profile: [bold cyan]{profile}[/bold cyan]"
    )
    if previous_profile and previous_profile != profile:
        console.print(
            f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
            f"[dim]to[/dim] [bold cyan]{profile}[/bold cyan]"
        )
    return 0


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on success, 1 on failure.
    """
    config = _load(args)
    scope = _scope(args)
    if scope.is_empty():
        console.print("[red]Error: select at least one section.[/red]")
        return 1

    adapter = get_adapter(args.profile, config)
    try:
        console.print(f"Backing up: [bold]{_describe_scope(scope)}[/bold]", style="dim")
        text = await backup_snapshot(
            adapter,
            scope,
            format_version=config.snapshot.format_version,
            audit=log_audit_sink,
            actor=_actor(),
        )
    finally:
        await adapter.close()

    path = save_snapshot(text, args.output, backups_dir=config.snapshot.backups_dir)
    console.print(f"[bold green]v[/bold green] Backup written to [cyan]{path}[/cyan]")
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Without ``--confirm`` the snapshot is parsed and the plan is printed;
    the database is not touched.

    Returns:
        0 on success or plan-only run, 1 on failure.
    """
    scope = _scope(args)
    if scope.is_empty():
        console.print("[red]Error: select at least one section.[/red]")
        return 1

    snapshot_path = Path(args.file)
    if not snapshot_path.exists():
        console.print(f"[red]Error: Snapshot file not found: {snapshot_path}[/red]")
        return 1
    text = snapshot_path.read_bytes()

    parsed = parse_snapshot(text)
    plan = Table(title="Restore Plan", show_header=True, header_style="bold")
    plan.add_column("Category", style="dim")
    plan.add_column("Records", justify="right")
    for category_def in creation_order(scope):
        records = parsed.payload.get(category_def.name)
        plan.add_row(category_def.name.value, str(len(records)) if records is not None else "-")
    console.print(plan)
    console.print(
        f"[dim]Shape:[/dim] {parsed.shape}  "
        f"[dim]Scope:[/dim] {_describe_scope(scope)}  "
        f"[dim]Clear before:[/dim] {'yes' if args.clear_before else 'no'}"
    )

    if not args.confirm:
        console.print()
        console.print(
            "[dim]To actually restore, add[/dim] [cyan]--confirm[/cyan] [dim]flag.[/dim]"
        )
        return 0

    config = _load(args)
    adapter = get_adapter(args.profile, config)
    try:
        console.print("Restoring...", style="dim")
        summary = await restore_snapshot(
            adapter,
            text,
            scope,
            clear_before=args.clear_before,
            taxonomy_provider=_taxonomy_provider(config),
            audit=log_audit_sink,
            actor=_actor(),
        )
    finally:
        await adapter.close()

    result = Table(title="Restore Summary", show_header=True, header_style="bold")
    result.add_column("Category", style="dim")
    result.add_column("Inserted", justify="right", style="green")
    result.add_column("Updated", justify="right", style="yellow")
    result.add_column("Skipped", justify="right")
    result.add_column("Deleted", justify="right", style="red")
    for name, counts in summary.counts.items():
        result.add_row(
            name,
            str(counts.inserted) if counts.inserted else "-",
            str(counts.updated) if counts.updated else "-",
            str(counts.skipped) if counts.skipped else "-",
            str(counts.deleted) if counts.deleted else "-",
        )
    console.print(result)
    console.print(f"[bold green]v[/bold green] Restore {summary.state.value}.")
    return 0


async def _async_stats(args: argparse.Namespace) -> int:
    """Async implementation for stats command."""
    adapter = get_adapter(args.profile, _load(args))
    try:
        counts = await collect_stats(adapter)
    finally:
        await adapter.close()

    table = Table(title="Row Counts", show_header=True, header_style="bold")
    table.add_column("Category", style="dim")
    table.add_column("Rows", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)
    return 0


async def _async_clear(args: argparse.Namespace) -> int:
    """Async implementation for clear command.

    Returns:
        0 on success or plan-only run, 1 on failure.
    """
    scope = _scope(args)
    if scope.is_empty():
        console.print("[red]Error: select at least one section.[/red]")
        return 1

    console.print(f"Sections to clear: [bold]{_describe_scope(scope)}[/bold]")
    if not args.confirm:
        console.print(
            "[dim]To actually delete, add[/dim] [cyan]--confirm[/cyan] [dim]flag.[/dim]"
        )
        return 0

    adapter = get_adapter(args.profile, _load(args))
    try:
        deleted = await clear_scope(adapter, scope)
    finally:
        await adapter.close()

    console.print(f"[bold green]v[/bold green] Deleted {sum(deleted.values())} rows.")
    return 0


async def _async_init_schema(args: argparse.Namespace) -> int:
    """Async implementation for init-schema command."""
    sql = resources.files("opsnap").joinpath("schema.sql").read_text(encoding="utf-8")
    statements = [s.strip() for s in sql.split(";") if s.strip()]

    adapter = get_adapter(args.profile, _load(args))
    try:
        for statement in statements:
            await adapter.execute(statement)
    finally:
        await adapter.close()

    console.print(f"[bold green]v[/bold green] Applied {len(statements)} statements.")
    return 0


async def _async_seed(args: argparse.Namespace) -> int:
    """Async implementation for seed command."""
    config = _load(args)
    adapter = get_adapter(args.profile, config)
    try:
        await ensure_initialized(
            adapter,
            _taxonomy_provider(config),
            admin_email=config.seed.initial_admin_email,
        )
    finally:
        await adapter.close()

    console.print("[bold green]v[/bold green] Initialization complete.")
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def _run(coro_fn, args: argparse.Namespace) -> int:
    """Run an async command, mapping expected failures to exit code 1."""
    try:
        return asyncio.run(coro_fn(args))
    except SnapshotError as e:
        console.print(f"[bold red]x[/bold red] {e.kind}: {e}")
        return 1
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1


def cmd_connect(args: argparse.Namespace) -> int:
    """Check the database and write the profile lock."""
    return _run(_async_connect, args)


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from opsnap.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if opsnap.toml not found.
    """
    try:
        config = _load(args)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        table.add_row(
            marker,
            f"[bold cyan]{name}[/bold cyan]" if name == current else name,
            profile.description or "",
        )

    console.print(table)
    if current:
        console.print("\n[bold green]*[/bold green] = current profile")
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    return _run(_async_backup, args)


def cmd_validate(args: argparse.Namespace) -> int:
    """Parse a snapshot file and report its shape and record counts.

    Returns:
        0 if the snapshot is valid, 1 otherwise.
    """
    snapshot_path = Path(args.file)
    if not snapshot_path.exists():
        console.print(f"[red]Error: Snapshot file not found: {snapshot_path}[/red]")
        return 1

    try:
        parsed = parse_snapshot(snapshot_path.read_bytes())
    except SnapshotError as e:
        console.print(f"[bold red]x[/bold red] {e.kind}: {e}")
        return 1

    table = Table(title="Snapshot Contents", show_header=True, header_style="bold")
    table.add_column("Category", style="dim")
    table.add_column("Records", justify="right")
    for category, records in parsed.payload.items():
        table.add_row(category.value, str(len(records)))
    console.print(table)

    if parsed.shape == "envelope":
        console.print(
            f"[bold green]v[/bold green] Valid snapshot "
            f"(format {parsed.format_version}, generated {parsed.generated_at.isoformat()})"
        )
    else:
        console.print("[bold green]v[/bold green] Valid snapshot (legacy bare payload)")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    return _run(_async_restore, args)


def cmd_stats(args: argparse.Namespace) -> int:
    return _run(_async_stats, args)


def cmd_clear(args: argparse.Namespace) -> int:
    return _run(_async_clear, args)


def cmd_init_schema(args: argparse.Namespace) -> int:
    return _run(_async_init_schema, args)


def cmd_seed(args: argparse.Namespace) -> int:
    return _run(_async_seed, args)


# ============================================================================
# Main entry point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="opsnap",
        description="Snapshot backup and restore for the operations tracker",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Profile from opsnap.toml (default: OPSNAP_DB_PROFILE or .opsnap-profile)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to opsnap.toml (default: ./opsnap.toml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connect = subparsers.add_parser("connect", help="Check the database and lock the profile")
    p_connect.set_defaults(func=cmd_connect)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_backup = subparsers.add_parser("backup", help="Write a snapshot file")
    _add_scope_flags(p_backup)
    p_backup.add_argument(
        "--output",
        "-o",
        default=None,
        help="Output path (default: <backups_dir>/backup-<timestamp>.json)",
    )
    p_backup.set_defaults(func=cmd_backup)

    p_validate = subparsers.add_parser("validate", help="Validate a snapshot file")
    p_validate.add_argument("file", help="Snapshot file to validate")
    p_validate.set_defaults(func=cmd_validate)

    p_restore = subparsers.add_parser("restore", help="Restore a snapshot file")
    p_restore.add_argument("file", help="Snapshot file to restore")
    _add_scope_flags(p_restore)
    p_restore.add_argument(
        "--clear-before",
        action="store_true",
        help="Delete every row in the selected sections first",
    )
    p_restore.add_argument(
        "--confirm",
        action="store_true",
        help="Actually perform the restore (otherwise only the plan is shown)",
    )
    p_restore.set_defaults(func=cmd_restore)

    p_stats = subparsers.add_parser("stats", help="Show row counts per category")
    p_stats.set_defaults(func=cmd_stats)

    p_clear = subparsers.add_parser("clear", help="Delete all rows in the selected sections")
    _add_scope_flags(p_clear)
    p_clear.add_argument(
        "--confirm",
        action="store_true",
        help="Actually delete",
    )
    p_clear.set_defaults(func=cmd_clear)

    p_init = subparsers.add_parser("init-schema", help="Create the application tables")
    p_init.set_defaults(func=cmd_init_schema)

    p_seed = subparsers.add_parser("seed", help="Seed the admin account and baseline taxonomy")
    p_seed.set_defaults(func=cmd_seed)

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
