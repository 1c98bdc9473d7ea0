"""
CLI for the snapshot store.

Commands:
    snapstore fetch URI - Fetch a URI through the snapshot cache
    snapstore show URI - Show the latest snapshot of a URI
    snapstore history URI - List all snapshots of a URI
    snapstore stats - Show index statistics
    snapstore config - Show current configuration
    snapstore version - Print version
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from snapstore import __version__
from snapstore.config import Settings, clear_settings_cache, get_settings
from snapstore.exceptions import SnapStoreError
from snapstore.logging import setup_logging
from snapstore.policy import Policy
from snapstore.store import SnapStore
from snapstore.types import SnapMeta

T = TypeVar("T")

app = typer.Typer(
    name="snapstore",
    help="Snapshot store - content-addressed snapshots of URIs with fetch-through caching",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

DirOption = Annotated[
    Optional[Path],
    typer.Option("--dir", "-d", help="Storage directory (default: SNAPSTORE_DIR)"),
]
AtOption = Annotated[
    Optional[int],
    typer.Option("--at", help="Point in time (seconds since epoch) to look up"),
]


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _require_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'snapstore config' to see the current values."
        )
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL, log_file=settings.LOG_FILE)
    return settings


def _run_with_store(
    directory: Path | None,
    action: Callable[[SnapStore], Awaitable[T]],
) -> T:
    """Open the store, run an action on it and report store errors."""
    settings = _require_settings()

    async def run() -> T:
        async with SnapStore(directory or settings.SNAPSTORE_DIR) as snaps:
            return await action(snaps)

    try:
        return asyncio.run(run())
    except SnapStoreError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


def _meta_panel(title: str, meta: SnapMeta, extra: str = "") -> Panel:
    return Panel(
        f"[bold]Timestamp:[/bold] {meta.timestamp} ({_format_timestamp(meta.timestamp)})\n"
        f"[bold]Hash:[/bold] {meta.content_hash}\n"
        f"[bold]Path:[/bold] {meta.path}{extra}",
        title=title,
        border_style="cyan",
    )


@app.command()
def fetch(
    uri: Annotated[str, typer.Argument(help="URI to fetch (http, https or file URL)")],
    max_age: Annotated[
        Optional[int],
        typer.Option("--max-age", "-m", help="Maximum age of a stored snapshot in seconds"),
    ] = None,
    at: AtOption = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the content to this file"),
    ] = None,
    directory: DirOption = None,
) -> None:
    """Fetch a URI through the snapshot cache.

    Serves a stored snapshot if it is recent enough, otherwise fetches the
    URI and records a new snapshot.
    """
    settings = _require_settings()
    policy = Policy(
        max_age=max_age if max_age is not None else settings.DEFAULT_MAX_AGE,
        max_timestamp=at,
    )

    async def action(snaps: SnapStore) -> tuple[SnapMeta, bool, bytes]:
        snap = await snaps.cache(uri, policy=policy)
        content = await snap.content.aread()
        return snap.meta, snap.is_fresh, content

    meta, is_fresh, content = _run_with_store(directory, action)

    status = "[green]fetched[/green]" if is_fresh else "[yellow]served from storage[/yellow]"
    console.print(
        _meta_panel(uri, meta, f"\n[bold]Status:[/bold] {status}\n[bold]Size:[/bold] {len(content)} bytes")
    )

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(content)
        console.print(f"[dim]Content written to:[/dim] {output}")


@app.command()
def show(
    uri: Annotated[str, typer.Argument(help="URI to look up")],
    at: AtOption = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", "-j", help="Decode and print the content as JSON"),
    ] = False,
    directory: DirOption = None,
) -> None:
    """Show the latest snapshot of a URI."""

    async def action(snaps: SnapStore) -> tuple[SnapMeta | None, Any]:
        if as_json:
            snap = await snaps.load_json(uri, Policy(max_timestamp=at))
            return snap.meta, snap.content
        return await snaps.get_latest_snap(uri, at), None

    meta, content = _run_with_store(directory, action)

    if meta is None:
        error_console.print(f"[yellow]No snapshot of {uri}[/yellow]")
        raise typer.Exit(1)

    console.print(_meta_panel(uri, meta))
    if as_json:
        console.print_json(json.dumps(content))


@app.command()
def history(
    uri: Annotated[str, typer.Argument(help="URI to look up")],
    directory: DirOption = None,
) -> None:
    """List all snapshots of a URI, newest first."""
    snaps_meta = _run_with_store(directory, lambda snaps: snaps.history(uri))

    if not snaps_meta:
        console.print(f"[yellow]No snapshots of {uri}[/yellow]")
        return

    table = Table(title=uri, show_header=True)
    table.add_column("Timestamp", style="cyan")
    table.add_column("Time (UTC)")
    table.add_column("Hash", style="green")

    for meta in snaps_meta:
        table.add_row(str(meta.timestamp), _format_timestamp(meta.timestamp), meta.content_hash)

    console.print(table)


@app.command()
def stats(directory: DirOption = None) -> None:
    """Show statistics about the snapshot index."""
    index_stats = _run_with_store(directory, lambda snaps: snaps.index.stats())

    table = Table(title="Snapshot Index", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key, value in index_stats.items():
        table.add_row(key, str(value))

    console.print(table)


@app.command()
def config() -> None:
    """Show current configuration."""
    console.print()
    console.print("[bold]Snapshot Store Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print("Check the environment variables or the .env file.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"snapstore version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
