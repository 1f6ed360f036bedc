"""huntstore CLI - Entry point for the huntstore command."""

import typer
from rich.console import Console

from huntstore import __version__
from huntstore.cli.migrate import EXIT_UNREACHABLE, migrate, parity
from huntstore.cli.output import print_flags, print_health

app = typer.Typer(
    name="huntstore",
    help="huntstore - zero-downtime migration between the legacy and primary stores",
    add_completion=False,
)
app.command("migrate")(migrate)
app.command("parity")(parity)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold green]huntstore[/bold green] version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(  # noqa: ARG001
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """huntstore - zero-downtime migration between the legacy and primary stores."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def health() -> None:
    """Check that both stores are reachable."""
    from huntstore.core.config import load_app_config, load_flags
    from huntstore.db.factory import create_stores
    from huntstore.models.errors import StoreUnavailableError

    config = load_app_config()
    flags = load_flags()
    results: dict[str, str] = {}
    try:
        stores = create_stores(config, flags)
    except StoreUnavailableError as e:
        results["primary"] = e.message
        print_health(results, console)
        raise typer.Exit(EXIT_UNREACHABLE) from e

    for role, adapter in (("primary", stores.primary), ("legacy", stores.legacy)):
        name = f"{role} ({adapter.backend_name})"
        try:
            adapter.ping()
            results[name] = "ok"
        except StoreUnavailableError as e:
            results[name] = e.message

    print_health(results, console)
    if any(status != "ok" for status in results.values()):
        raise typer.Exit(EXIT_UNREACHABLE)


@app.command()
def flags() -> None:
    """Show the live store flags and the routing they select."""
    from huntstore.core.config import load_flags
    from huntstore.repository.factory import resolve_routes

    snapshot = load_flags()
    read_route, write_route = resolve_routes(snapshot)
    print_flags(snapshot, (read_route.value, write_route.value), console)


if __name__ == "__main__":
    app()
