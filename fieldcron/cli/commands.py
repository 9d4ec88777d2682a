"""fieldcron CLI: Typer-based command-line interface."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from fieldcron import __version__

app = typer.Typer(
    name="fieldcron",
    help="fieldcron - recurring Field Nation work-order requests",
    no_args_is_help=True,
)

console = Console()

_STATE_STYLE = {
    "completed": "green",
    "failed": "red",
    "skipped": "dim",
}


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"fieldcron v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """fieldcron - recurring Field Nation work-order requests."""


# ════════════════════════════════════════════════════════════
# run: start API server (with the recurring scheduler)
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn) and the cron scheduler."""
    import uvicorn

    console.print(f"[green]Starting fieldcron API on {host}:{port}[/green]")
    uvicorn.run("fieldcron.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# tick: one dispatcher pass, then exit
# ════════════════════════════════════════════════════════════


def _build_dispatcher(config):
    from fieldcron.core.cron.dispatcher import CronDispatcher
    from fieldcron.core.marketplace.client import FieldNationClient
    from fieldcron.core.marketplace.tokens import IntegrationService
    from fieldcron.storage.store import SQLiteStore

    db = SQLiteStore(config.database.path)
    client = FieldNationClient.from_config(config.marketplace)
    return CronDispatcher(
        db,
        client,
        IntegrationService(db, client),
        max_workers=config.scheduler.max_workers,
        default_tz=config.scheduler.timezone,
    )


@app.command()
def tick(
    cron_id: int | None = typer.Option(None, "--cron", "-c", help="Run a single cron"),
    config_path: str | None = typer.Option(None, "--config", help="Config YAML path"),
) -> None:
    """Run the dispatcher once (all active crons, or one) and print results."""
    from fieldcron.core.config.loader import load_config

    dispatcher = _build_dispatcher(load_config(config_path))
    if cron_id is not None:
        results = [asyncio.run(dispatcher.run_task(cron_id))]
    else:
        results = asyncio.run(dispatcher.tick())

    if not results:
        console.print("[dim]No active crons.[/dim]")
        return

    table = Table(title="Tick results")
    table.add_column("Cron", style="cyan")
    table.add_column("State")
    table.add_column("Fetched", justify="right")
    table.add_column("Requested")
    table.add_column("Taken", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Note", style="dim")
    for r in results:
        style = _STATE_STYLE.get(r.state.value, "white")
        table.add_row(
            str(r.cron_id),
            f"[{style}]{r.state.value}[/{style}]",
            str(r.fetched),
            ", ".join(str(i) for i in r.submitted) or "-",
            str(len(r.already_taken)),
            str(len(r.failed)),
            r.error or r.reason or "",
        )
    console.print(table)


# ════════════════════════════════════════════════════════════
# crons: list configured crons
# ════════════════════════════════════════════════════════════


@app.command()
def crons(
    user: str | None = typer.Option(None, "--user", "-u", help="Only this user's crons"),
    config_path: str | None = typer.Option(None, "--config", help="Config YAML path"),
) -> None:
    """List crons (non-deleted)."""
    from fieldcron.core.config.loader import load_config
    from fieldcron.storage.store import SQLiteStore

    config = load_config(config_path)
    db = SQLiteStore(config.database.path)
    rows = db.list_crons(user)
    if not rows:
        console.print("[dim]No crons.[/dim]")
        return

    table = Table(title="Crons")
    table.add_column("ID", style="cyan")
    table.add_column("User")
    table.add_column("ZIP")
    table.add_column("Radius", justify="right")
    table.add_column("Window")
    table.add_column("Active until")
    table.add_column("Requested", justify="right")
    table.add_column("Status")
    for c in rows:
        window = (
            f"{c.working_window_start_at:%H:%M}-{c.working_window_end_at:%H:%M}"
            f" {c.timezone or config.scheduler.timezone}"
        )
        table.add_row(
            str(c.cron_id),
            c.user_id,
            c.center_zip,
            f"{c.driving_radius:g}",
            window,
            c.cron_end_at.strftime("%Y-%m-%d %H:%M"),
            str(c.total_requested),
            c.status.value,
        )
    console.print(table)


if __name__ == "__main__":
    app()
