"""Rich output formatting for CLI commands."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from huntstore.migration.engine import MigrationReport
    from huntstore.migration.parity import ParityReport
    from huntstore.models.config import StoreFlags

STATUS_STYLES = {
    "planned": "cyan",
    "migrated": "green",
    "skipped": "dim",
    "invalid": "yellow",
    "failed": "red",
    "not_started": "magenta",
    "match": "green",
    "mismatch": "yellow",
    "missing_primary": "red",
    "missing_legacy": "red",
}


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def print_migration_plan(report: MigrationReport, console: Console) -> None:
    """Print the writes a dry run would perform."""
    console.print()
    console.print(Panel("[bold cyan]Migration plan (dry run)[/bold cyan]", expand=False))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Organization")
    table.add_column("Entity")
    table.add_column("Key")

    totals: Counter[str] = Counter()
    for plan in report.plans:
        for write in plan.writes:
            table.add_row(plan.slug, write.entity, str(write.key))
            totals[write.entity] += 1
    console.print(table)

    summary = ", ".join(f"{count} {entity} upsert(s)" for entity, count in sorted(totals.items()))
    console.print(f"Planned: {summary or 'nothing'}")
    console.print("[dim]Dry run: no writes performed, checkpoint untouched.[/dim]")


def print_migration_summary(report: MigrationReport, console: Console) -> None:
    """Print per-status counts and the organizations that need attention."""
    counts: Counter[str] = Counter(o.status.value for o in report.outcomes)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Label", style="dim")
    table.add_column("Value", justify="right")
    for status in ("planned", "migrated", "skipped", "invalid", "failed", "not_started"):
        if counts.get(status):
            table.add_row(_styled(status), str(counts[status]))
    table.add_row("writes", str(report.writes))
    if report.registry_copied:
        table.add_row("registry", "copied")
    console.print(table)

    if report.problems:
        problems = Table(title="Organizations needing attention", header_style="bold")
        problems.add_column("Organization")
        problems.add_column("Status")
        problems.add_column("Reason")
        for outcome in report.problems:
            problems.add_row(outcome.slug, _styled(outcome.status.value), outcome.error or "")
        console.print(problems)

    if report.cancelled:
        console.print("[yellow]Run cancelled. Re-run with --resume to continue.[/yellow]")
    elif report.success:
        console.print("[green]Migration completed successfully.[/green]")


def print_parity_report(report: ParityReport, console: Console) -> None:
    """Print the parity table with differences under each mismatch."""
    seed = "sequential" if report.seed is None else f"seed {report.seed}"
    console.print(
        f"[bold]Parity[/bold]: {len(report.results)} of {report.population} organization(s) ({seed})"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Organization")
    table.add_column("Status")
    table.add_column("Differences")
    for result in report.results:
        table.add_row(result.slug, _styled(result.status.value), "\n".join(result.differences))
    console.print(table)

    if report.in_parity:
        console.print("[green]All sampled organizations match.[/green]")
    else:
        console.print(f"[yellow]{len(report.mismatches)} organization(s) differ.[/yellow]")


def print_health(results: dict[str, str], console: Console) -> None:
    """Print one row per backend: ``ok`` or the error message."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Store")
    table.add_column("Status")
    for name, status in results.items():
        table.add_row(name, "[green]ok[/green]" if status == "ok" else f"[red]{status}[/red]")
    console.print(table)


def print_flags(flags: StoreFlags, routes: tuple[str, str], console: Console) -> None:
    """Print the flag snapshot and the routing it produces."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Flag", style="dim")
    table.add_column("Value")
    for name, value in flags.model_dump().items():
        table.add_row(name.upper(), "[green]on[/green]" if value else "off")
    table.add_row("reads", routes[0])
    table.add_row("writes", routes[1])
    console.print(table)
