"""CLI interface for Family Canvas saved state."""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .errors import LoadFormatError

app = typer.Typer(
    name="family-canvas",
    help="Inspect and maintain saved family tree canvas state",
    add_completion=False,
)
console = Console()

_LEVEL_STYLES = {"success": "green", "info": "cyan", "warning": "yellow", "error": "red"}

StorageDir = typer.Option(None, "--dir", "-d", help="Storage directory (default FAMILY_CANVAS_STORAGE_DIR)")


def get_config():
    """Load configuration from environment."""
    from dotenv import load_dotenv

    load_dotenv()

    from .config import CanvasConfig

    return CanvasConfig()


def _console_notifier(level: str, title: str, message: str) -> None:
    style = _LEVEL_STYLES.get(level, "white")
    console.print(f"[{style}]{title}:[/{style}] {escape(message)}")


def open_context(storage_dir: Path | None, load: bool = True):
    """Build a context over a FileStorage directory and restore its state."""
    from .context import AppContext
    from .persistence import FileStorage

    config = get_config()
    root = storage_dir or Path(config.persistence.storage_dir)
    ctx = AppContext(config=config, storage=FileStorage(root), notifier=_console_notifier)
    result = ctx.persistence.load() if load else None
    return ctx, result


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine log events"),
):
    """Family Canvas maintenance commands."""
    from .logging import configure_logging

    configure_logging(level="DEBUG" if verbose else "WARNING", json=False)


@app.command()
def show(
    storage_dir: Path = StorageDir,
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum people listed"),
):
    """List the people in the saved tree."""
    ctx, result = open_context(storage_dir)
    if not result.restored:
        console.print(f"[yellow]No saved tree ({result.outcome.value})[/yellow]")
        raise typer.Exit(0)

    table = Table(title="People")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Gender")
    table.add_column("Mother")
    table.add_column("Father")
    table.add_column("Spouse")

    for count, person in enumerate(ctx.store):
        if count >= limit:
            break
        table.add_row(
            person.id,
            person.display_name,
            person.gender,
            person.mother_id or "",
            person.father_id or "",
            person.spouse_id or "",
        )

    console.print(table)
    console.print(f"[dim]{len(ctx.store)} people, {len(ctx.surface.connections)} connections[/dim]")


@app.command()
def stats(storage_dir: Path = StorageDir):
    """Compare stored state with what it restores to."""
    ctx, _ = open_context(storage_dir)
    summary = ctx.persistence.describe()

    table = Table(title="Stored State")
    table.add_column("Metric")
    table.add_column("Value")
    for key, value in summary["stored"].items():
        table.add_row(key.replace("_", " ").title(), str(value))
    table.add_row("Backups", str(summary["backups"]))
    console.print(table)

    live = Table(title="Restored State")
    live.add_column("Metric")
    live.add_column("Value")
    for key, value in summary["live"].items():
        live.add_row(key.replace("_", " ").title(), str(value))
    console.print(live)


@app.command()
def check(
    storage_dir: Path = StorageDir,
    fix: bool = typer.Option(False, "--fix", help="Save the repaired state"),
):
    """Run the integrity pass and rebuild connections."""
    ctx, result = open_context(storage_dir)
    if not result.restored:
        console.print(f"[yellow]Nothing to check ({result.outcome.value})[/yellow]")
        raise typer.Exit(0)

    fixes = ctx.cleanup()
    derived = ctx.deriver.last_stats

    console.print(
        Panel(
            f"Integrity fixes on load: {result.integrity_fixes}\n"
            f"Integrity fixes now: {len(fixes)}\n"
            f"Connections: {derived.added} drawn, {derived.hidden} hidden, {derived.missing} missing endpoint\n"
            f"Recovered from backup map: {'yes' if result.recovered_from_backup else 'no'}",
            title="[bold]Integrity Check[/bold]",
        )
    )
    for warning in result.warnings:
        console.print(f"[yellow]• {warning}[/yellow]")

    if fix:
        saved = ctx.persistence.save()
        if not saved.ok:
            console.print(f"[red]Save failed: {escape(str(saved.error))}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]Saved ({saved.cache_format}, {saved.size_bytes} bytes)[/green]")


@app.command("export")
def export_state(
    output: Path = typer.Argument(..., help="Destination JSON file"),
    storage_dir: Path = StorageDir,
):
    """Write the saved tree as pretty JSON."""
    ctx, result = open_context(storage_dir)
    if not result.restored:
        console.print(f"[red]No saved tree to export ({result.outcome.value})[/red]")
        raise typer.Exit(1)
    ctx.persistence.export_to_file(output)
    console.print(f"[green]Exported {len(ctx.store)} people to {output}[/green]")


@app.command("import")
def import_state(
    file_path: Path = typer.Argument(..., help="Previously exported JSON file"),
    storage_dir: Path = StorageDir,
):
    """Replace the saved tree with an exported file."""
    if not file_path.exists():
        console.print(f"[red]Error: File not found: {file_path}[/red]")
        raise typer.Exit(1)

    ctx, _ = open_context(storage_dir, load=False)
    try:
        result = ctx.persistence.import_from_file(file_path)
    except LoadFormatError as e:
        console.print(f"[red]Error: {e} ({escape(str(e.details))})[/red]")
        raise typer.Exit(1)

    saved = ctx.persistence.save()
    if not saved.ok:
        console.print(f"[red]Save failed: {escape(str(saved.error))}[/red]")
        raise typer.Exit(1)
    console.print(
        f"[green]Imported {result.persons} people and {result.connections} connections "
        f"from {file_path.name}[/green]"
    )


@app.command()
def backups(
    storage_dir: Path = StorageDir,
    as_json: bool = typer.Option(False, "--json", help="Print the manifest as JSON"),
):
    """List timestamped backups, newest first."""
    ctx, _ = open_context(storage_dir, load=False)
    entries = ctx.persistence.backups()

    if as_json:
        console.print_json(json.dumps([{"key": key, "timestamp": ts} for key, ts in entries]))
        return
    if not entries:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title="Backups")
    table.add_column("Key")
    table.add_column("Timestamp (ms)")
    table.add_column("Size")
    for key, timestamp in entries:
        table.add_row(key, str(timestamp), str(ctx.persistence.storage.size_of(key)))
    console.print(table)


@app.command()
def clear(
    storage_dir: Path = StorageDir,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete the saved tree and all of its backups."""
    if not yes:
        typer.confirm("Delete saved state and every backup?", abort=True)
    ctx, _ = open_context(storage_dir, load=False)
    removed = ctx.persistence.clear()
    console.print(f"[green]Removed {removed} stored entries[/green]")


if __name__ == "__main__":
    app()
