"""Command-line interface for Dependabot Tracker."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from dependabot_tracker import __version__
from dependabot_tracker.config import (
    ConfigError,
    Credentials,
    TrackerConfig,
    generate_default_config,
)
from dependabot_tracker.github import AlertClient
from dependabot_tracker.log import LogSink
from dependabot_tracker.models import AlertState
from dependabot_tracker.poller import Poller
from dependabot_tracker.registry import RepositoryRegistry
from dependabot_tracker.renderer import Renderer, TerminalDevice, TerminalError
from dependabot_tracker.state import AlertStateStore

app = typer.Typer(
    name="dependabot-tracker",
    help="Live dashboard of open Dependabot alerts",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Dependabot Tracker version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Dependabot Tracker - open alert monitoring."""
    pass


def _load(config: Optional[Path]) -> tuple[TrackerConfig, Credentials, RepositoryRegistry]:
    """Load configuration, credentials and registry, exiting on failure."""
    try:
        tracker_config = TrackerConfig.load(config)
        credentials = tracker_config.get_credentials()
        registry = tracker_config.build_registry(credentials.account)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    return tracker_config, credentials, registry


async def run_dashboard(
    config: TrackerConfig,
    credentials: Credentials,
    registry: RepositoryRegistry,
    sink: LogSink,
    terminal: TerminalDevice | None = None,
) -> None:
    """Run the poller and the renderer until the user quits."""
    if terminal is None:
        from dependabot_tracker.terminal import Terminal

        terminal = Terminal()

    store = AlertStateStore(AlertState.initial(registry))
    async with AlertClient(config, credentials, sink) as client:
        poller = Poller(registry, client, store, config.polling, sink)
        poller_task = asyncio.create_task(poller.run_forever())
        renderer = Renderer(
            store,
            terminal,
            account=credentials.account,
            tick_seconds=config.dashboard.tick_seconds,
        )
        try:
            await renderer.run()
        finally:
            # The terminal is already restored; let an in-flight request finish
            poller.stop()
            await poller_task
            sink.event("Poller stopped")


@app.command()
def watch(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
    ),
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between poll cycles.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log file path.",
    ),
) -> None:
    """Show the live alert dashboard."""
    tracker_config, credentials, registry = _load(config)
    if interval is not None:
        tracker_config.polling.interval_seconds = interval
    if log_file is not None:
        tracker_config.logging.file = log_file

    sink = LogSink(tracker_config.logging.file, tracker_config.logging.level)
    sink.init()
    sink.event(f"Tracking {len(registry)} repositories for {credentials.account}")
    try:
        asyncio.run(run_dashboard(tracker_config, credentials, registry, sink))
    except TerminalError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        sink.shutdown()


def _print_summary(state: AlertState, account: str) -> None:
    """Print per-repository alert table."""
    table = Table(title=f"Dependabot Alerts: {account}")

    table.add_column("Repository", style="cyan")
    table.add_column("Open", justify="right")
    table.add_column("Critical", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Status")

    for snapshot in state.snapshots:
        if snapshot.last_error is not None:
            status = f"[red]{snapshot.last_error.value}[/red]"
        else:
            status = "[green]ok[/green]"
        table.add_row(
            snapshot.target.full_name,
            str(snapshot.open_count),
            str(snapshot.severities.critical),
            str(snapshot.severities.high),
            status,
        )

    console.print(table)
    total = f"[red]{state.total_open}[/red]" if state.total_open > 0 else "0"
    console.print(f"\nOpen alerts: {total}")
    if state.error_count:
        console.print(
            f"[yellow]{state.error_count} repositories failed[/yellow] "
            f"({state.stale_open} alerts from earlier data not counted)"
        )


@app.command()
def scan(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output JSON file path.",
    ),
) -> None:
    """Run a single poll cycle and print the results."""
    tracker_config, credentials, registry = _load(config)
    sink = LogSink(tracker_config.logging.file, tracker_config.logging.level)

    async def run_scan() -> AlertState:
        store = AlertStateStore(AlertState.initial(registry))
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Fetching alerts...", total=None)

            def on_progress(repo: str, current: int, total: int) -> None:
                progress.update(
                    task,
                    description=f"Fetching {repo} ({current}/{total})",
                )

            async with AlertClient(tracker_config, credentials, sink) as client:
                poller = Poller(registry, client, store, tracker_config.polling, sink)
                poller.set_progress_callback(on_progress)
                state = await poller.run_cycle()

            progress.update(task, description="Scan complete!")
        return state

    with sink:
        state = asyncio.run(run_scan())

    console.print()
    _print_summary(state, credentials.account)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(state.model_dump_json(indent=2))
        console.print(f"\n[green]JSON report saved to:[/green] {output}")


@app.command()
def init(
    path: Optional[Path] = typer.Option(
        None,
        "--path",
        "-p",
        help="Config file path.",
    ),
) -> None:
    """Initialize Dependabot Tracker configuration."""
    if path is None:
        path = Path.cwd() / "dependabot-tracker.yaml"

    if path.exists():
        overwrite = typer.confirm(f"{path} already exists. Overwrite?")
        if not overwrite:
            raise typer.Exit()

    generate_default_config(path)
    console.print(f"[green]Configuration created:[/green] {path}")
    console.print("\nEdit the file to list the repositories to track.")


if __name__ == "__main__":
    app()
