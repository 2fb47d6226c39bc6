"""
CLI for the file cache.

Commands:
    sweepcache put KEY [FILE] - Store a file (or stdin) under KEY
    sweepcache get KEY - Write an entry to stdout or a file
    sweepcache rm KEY - Delete an entry
    sweepcache ls - List entries, least recently used first
    sweepcache sweep - Run one eviction pass
    sweepcache clear - Remove every entry
    sweepcache watch - Run the background sweep until interrupted
    sweepcache config - Show current configuration
    sweepcache version - Print version
"""

from __future__ import annotations

import asyncio
import shutil
import sys
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import orjson
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sweepcache import __version__
from sweepcache.cache import FileCache
from sweepcache.config import Settings, clear_settings_cache, get_settings
from sweepcache.exceptions import CacheError

app = typer.Typer(
    name="sweepcache",
    help="Disk-backed key/value cache with TTL and size eviction",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _open_cache() -> FileCache:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'sweepcache config' to see what's wrong."
        )
        raise typer.Exit(1)
    try:
        return FileCache.from_settings(settings)
    except CacheError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _fail(e: CacheError) -> NoReturn:
    error_console.print(f"[red]Error:[/red] {e}")
    raise typer.Exit(1)


@app.command()
def put(
    key: Annotated[str, typer.Argument(help="Cache key (a plain file name)")],
    source: Annotated[
        Optional[Path],
        typer.Argument(help="File to store; reads stdin when omitted", exists=True, dir_okay=False),
    ] = None,
) -> None:
    """Store a file under KEY. Existing entries are never overwritten."""
    cache = _open_cache()
    try:
        if source is None:
            size = cache.write(key, sys.stdin.buffer)
        else:
            with source.open("rb") as f:
                size = cache.write(key, f)
    except CacheError as e:
        _fail(e)
    console.print(f"[green]Stored[/green] {key} ({size} bytes)")


@app.command()
def get(
    key: Annotated[str, typer.Argument(help="Cache key")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write to this file instead of stdout"),
    ] = None,
) -> None:
    """Copy an entry to stdout or a file. Counts as an access."""
    cache = _open_cache()
    try:
        with cache.read(key) as f:
            if output is None:
                shutil.copyfileobj(f, sys.stdout.buffer)
                sys.stdout.buffer.flush()
            else:
                with output.open("wb") as out:
                    shutil.copyfileobj(f, out)
    except CacheError as e:
        _fail(e)


@app.command()
def rm(key: Annotated[str, typer.Argument(help="Cache key")]) -> None:
    """Delete an entry."""
    cache = _open_cache()
    try:
        cache.delete(key)
    except CacheError as e:
        _fail(e)
    console.print(f"[green]Deleted[/green] {key}")


@app.command(name="ls")
def list_command(
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON instead of a table")] = False,
) -> None:
    """List entries, least recently used first."""
    cache = _open_cache()
    try:
        entries = cache.list_entries()
    except CacheError as e:
        _fail(e)

    if as_json:
        rows = [
            {"name": e.name, "size": e.size, "last_access": e.last_access_at.isoformat()}
            for e in entries
        ]
        typer.echo(orjson.dumps(rows, option=orjson.OPT_INDENT_2).decode("utf-8"))
        return

    table = Table(title=f"Entries in {cache.base_dir}", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Size", style="green", justify="right")
    table.add_column("Last access (UTC)", style="magenta")
    for entry in entries:
        table.add_row(entry.name, str(entry.size), entry.last_access_at.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)
    console.print(f"[dim]{len(entries)} entries, {sum(e.size for e in entries)} bytes[/dim]")


@app.command()
def sweep(
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON")] = False,
) -> None:
    """Run one TTL + size eviction pass now."""
    cache = _open_cache()
    try:
        report = cache.evict()
    except CacheError as e:
        _fail(e)

    if as_json:
        typer.echo(orjson.dumps(report.to_dict()).decode("utf-8"))
        return

    console.print(
        Panel(
            f"[bold]Expired (TTL):[/bold] {report.expired_count}\n"
            f"[bold]Evicted (size):[/bold] {report.evicted_count}\n"
            f"[bold]Bytes freed by size pass:[/bold] {report.evicted_bytes}",
            title="[bold cyan]Sweep Complete[/bold cyan]",
            border_style="cyan",
        )
    )


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    """Remove every entry and the cache directories."""
    cache = _open_cache()
    if not yes:
        typer.confirm(f"Remove everything under {cache.base_dir}?", abort=True)
    try:
        cache.clear()
    except CacheError as e:
        _fail(e)
    console.print("[green]Cache cleared[/green]")


@app.command()
def watch(
    interval: Annotated[
        Optional[float],
        typer.Option("--interval", "-i", help="Seconds between sweeps"),
    ] = None,
) -> None:
    """Run the background sweep until interrupted (Ctrl-C)."""
    cache = _open_cache()
    if interval is not None:
        if interval <= 0:
            error_console.print("[red]Error:[/red] --interval must be positive")
            raise typer.Exit(1)
        cache.sweep_interval = interval

    async def _run() -> None:
        scheduler = cache.start_sweep()
        try:
            await scheduler.wait_closed()
        finally:
            cache.stop_sweep()

    console.print(
        f"[bold]Sweeping[/bold] {cache.base_dir} every {cache.sweep_interval:g}s "
        "[dim](Ctrl-C to stop)[/dim]"
    )
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


@app.command()
def config() -> None:
    """Show current configuration."""
    console.print()
    console.print("[bold]File Cache Configuration[/bold]")
    console.print()

    try:
        clear_settings_cache()
        settings = get_settings()
    except Exception as e:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print(str(e))
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"sweepcache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
