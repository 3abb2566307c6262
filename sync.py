#!/usr/bin/env python3
"""
Event Map → GitHub Sync CLI

Usage:
    python sync.py                          # Sync events.json to GitHub
    python sync.py sync --events FILE       # Sync a specific snapshot
    python sync.py --dry-run                # Preview changes without writing
    python sync.py --force                  # Write even if only content changed
    python sync.py render --events FILE     # Print the rendered Markdown
    python sync.py diff OLD.md NEW.md       # Compare two documents by section
    python sync.py version                  # Show version
"""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from eventmap_sync import __version__
from eventmap_sync.change_detector import diff_documents
from eventmap_sync.config import Config, render_options_from_env
from eventmap_sync.errors import SyncError
from eventmap_sync.markdown_renderer import MarkdownRenderer
from eventmap_sync.models import load_events
from eventmap_sync.sync_engine import SyncEngine, SyncResult

console = Console()

DEFAULT_EVENTS_FILE = "events.json"


def setup_logging(debug: bool) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=debug)],
    )


@click.group(invoke_without_command=True)
@click.option("--force", is_flag=True, help="Write even when no event was added or removed")
@click.option("--dry-run", is_flag=True, help="Preview changes without writing to GitHub")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.option("--env-file", type=click.Path(dir_okay=False, path_type=Path), help="Path to a .env file")
@click.pass_context
def cli(ctx, force: bool, dry_run: bool, debug: bool, env_file: Path):
    """
    Event Map → GitHub Sync

    Mirrors the non-archived event list to a Markdown file in a GitHub repository.
    """
    ctx.ensure_object(dict)
    ctx.obj["force"] = force
    ctx.obj["dry_run"] = dry_run
    ctx.obj["debug"] = debug
    ctx.obj["env_file"] = env_file

    setup_logging(debug)

    # If no subcommand, run sync
    if ctx.invoked_subcommand is None:
        ctx.invoke(sync)


@cli.command()
@click.option(
    "--events",
    "events_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=DEFAULT_EVENTS_FILE,
    show_default=True,
    help="JSON export of the event table",
)
@click.pass_context
def sync(ctx, events_file: Path):
    """Run synchronization from the event snapshot to GitHub."""
    debug = ctx.obj.get("debug", False)

    try:
        events = load_events(events_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Invalid events file:[/red] {e}")
        sys.exit(1)

    try:
        config = Config.from_env(ctx.obj.get("env_file"))

        # Apply CLI overrides
        if ctx.obj.get("force"):
            config.force_sync = True
        if ctx.obj.get("dry_run"):
            config.dry_run = True
        if debug:
            config.debug = True

        console.print("\n[bold blue]🔄 Starting Event Map → GitHub Sync[/bold blue]\n")
        engine = SyncEngine(config)
        result = engine.sync(events)

        print_summary(result)

    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("\n[dim]Make sure you have created a .env file with your GitHub App credentials.[/dim]")
        sys.exit(1)
    except SyncError as e:
        console.print(f"[red]Sync failed ({e.kind}):[/red] {e}")
        if e.retryable:
            console.print("[yellow]This failure is temporary; run the sync again shortly.[/yellow]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync cancelled.[/yellow]")
        sys.exit(130)


@cli.command()
@click.option(
    "--events",
    "events_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=DEFAULT_EVENTS_FILE,
    show_default=True,
    help="JSON export of the event table",
)
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), help="Write to a file instead of stdout")
@click.option("--no-timestamp", is_flag=True, help="Omit the generation time from the header")
@click.pass_context
def render(ctx, events_file: Path, output: Path, no_timestamp: bool):
    """Render the event snapshot to Markdown without syncing."""
    try:
        events = load_events(events_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Invalid events file:[/red] {e}")
        sys.exit(1)

    try:
        options = render_options_from_env(ctx.obj.get("env_file"))
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    options.include_generated_at = not no_timestamp
    renderer = MarkdownRenderer(options)
    markdown = renderer.render(events)

    if output:
        output.write_text(markdown, encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")
    else:
        click.echo(markdown, nl=False)


@cli.command()
@click.argument("old", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("new", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def diff(old: Path, new: Path):
    """Compare two rendered documents by event section."""
    changes = diff_documents(
        old.read_text(encoding="utf-8"),
        new.read_text(encoding="utf-8"),
    )

    if changes.is_noop:
        console.print("[dim]No events added or removed[/dim]")
        return

    for name in sorted(changes.added):
        console.print(f"[green]+ {name}[/green]")
    for name in sorted(changes.removed):
        console.print(f"[red]- {name}[/red]")


@cli.command()
def version():
    """Show version information."""
    console.print(f"Event Map → GitHub Sync v{__version__}")


def print_summary(result: SyncResult) -> None:
    """Print sync summary."""
    console.print("\n" + "=" * 50)
    console.print("[bold]Sync Summary[/bold]")
    console.print("=" * 50)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Outcome", result.status.value + (" (dry run)" if result.dry_run else ""))
    table.add_row("Events added", str(len(result.changes.added)))
    table.add_row("Events removed", str(len(result.changes.removed)))
    table.add_row("Events unchanged", str(len(result.changes.unchanged)))
    table.add_row("Written", "✓" if result.written else "✗")
    table.add_row("Revision", result.revision or "-")
    if result.url:
        table.add_row("URL", result.url)

    console.print(table)

    if result.changes.added:
        console.print(f"\n[green]Added:[/green] {', '.join(sorted(result.changes.added))}")
    if result.changes.removed:
        console.print(f"\n[red]Removed:[/red] {', '.join(sorted(result.changes.removed))}")

    if result.diagnostics:
        console.print("\n[bold]Diagnostics[/bold]")
        for entry in result.diagnostics:
            style = "red" if entry.type == "error" else "dim"
            console.print(f"[{style}]{entry.timestamp:%H:%M:%S} {entry.title}[/{style}]")

    console.print("")


if __name__ == "__main__":
    cli()
