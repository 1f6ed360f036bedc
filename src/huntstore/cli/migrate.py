"""CLI commands for the offline migration and parity checks."""

from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import typer
from rich.console import Console

from huntstore.cli.output import print_migration_plan, print_migration_summary, print_parity_report
from huntstore.models.errors import RecordValidationError, StoreUnavailableError

if TYPE_CHECKING:
    from huntstore.migration.engine import MigrationEngine

logger = logging.getLogger(__name__)
console = Console()

EXIT_PROBLEMS = 1
EXIT_UNREACHABLE = 2


def _parse_orgs(value: Optional[str]) -> Optional[list[str]]:
    """Parse a comma-separated slug list."""
    if not value:
        return None
    slugs = [s.strip() for s in value.split(",") if s.strip()]
    if not slugs:
        raise typer.BadParameter("--orgs needs at least one organization slug")
    return slugs


def _install_cancel_handlers(engine: MigrationEngine) -> dict[int, Any]:
    """Route SIGINT/SIGTERM to a graceful cancel. Returns the handlers replaced."""
    if threading.current_thread() is not threading.main_thread():
        return {}

    def _handle_shutdown(signum: int, _frame: Any) -> None:
        console.print(f"\n[yellow]Signal {signum} received, finishing in-flight organizations...[/yellow]")
        engine.cancel()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle_shutdown)
    return previous


def _restore_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def migrate(
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the write plan without writing anything"
    ),
    resume: bool = typer.Option(
        False, "--resume", help="Skip organizations already in the checkpoint"
    ),
    checkpoint_path: Optional[Path] = typer.Option(
        None, "--checkpoint-path", help="Checkpoint file (default: <data_dir>/migration-checkpoint.json)"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, max=32, help="Organizations migrated in parallel"
    ),
    orgs: Optional[str] = typer.Option(
        None, "--orgs", help="Comma-separated organization slugs to migrate"
    ),
) -> None:
    """Copy legacy records into the primary store."""
    from huntstore.core.config import load_app_config, load_flags
    from huntstore.core.logging import setup_logging
    from huntstore.db.factory import create_stores
    from huntstore.migration.engine import MigrationEngine

    only = _parse_orgs(orgs)
    config = load_app_config()
    setup_logging(config.log_level, config.log_file)

    try:
        stores = create_stores(config, load_flags())
        engine = MigrationEngine(
            stores.legacy,
            stores.primary,
            checkpoint_path=checkpoint_path or config.checkpoint_path,
            concurrency=concurrency or config.migration.concurrency,
        )
        engine.check_backends()
    except StoreUnavailableError as e:
        console.print(f"[red]Backend unreachable: {e}[/red]")
        raise typer.Exit(EXIT_UNREACHABLE) from e

    previous = _install_cancel_handlers(engine)
    try:
        report = engine.run(dry_run=dry_run, resume=resume, only=only)
    except StoreUnavailableError as e:
        console.print(f"[red]Backend unreachable: {e}[/red]")
        raise typer.Exit(EXIT_UNREACHABLE) from e
    except RecordValidationError as e:
        console.print(f"[red]Cannot migrate: {e.message}[/red]")
        raise typer.Exit(EXIT_PROBLEMS) from e
    finally:
        _restore_handlers(previous)

    if dry_run:
        print_migration_plan(report, console)
    print_migration_summary(report, console)

    if not report.success:
        raise typer.Exit(EXIT_PROBLEMS)


def parity(
    sample: int = typer.Option(10, "--sample", "-n", min=1, help="Organizations to compare"),
    seed: Optional[int] = typer.Option(
        None, "--seed", help="Random seed (default: first N organizations in order)"
    ),
) -> None:
    """Compare a sample of organizations between legacy and primary."""
    from huntstore.core.config import load_app_config, load_flags
    from huntstore.core.logging import setup_logging
    from huntstore.db.factory import create_stores
    from huntstore.migration.parity import ParityChecker

    config = load_app_config()
    setup_logging(config.log_level, config.log_file)

    try:
        stores = create_stores(config, load_flags())
        report = ParityChecker(stores.legacy, stores.primary).check(sample=sample, seed=seed)
    except StoreUnavailableError as e:
        console.print(f"[red]Backend unreachable: {e}[/red]")
        raise typer.Exit(EXIT_UNREACHABLE) from e

    print_parity_report(report, console)
