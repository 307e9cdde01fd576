"""
CLI commands over the persisted metric snapshot.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .utils import open_monitor, run_guarded, storage_options

console = Console()


@click.command()
@storage_options
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def status(storage_kind: str, db_path: Optional[Path], storage_dir: Optional[Path], output_format: str):
    """View a summary of the stored performance metrics."""
    def body() -> None:
        monitor = open_monitor(storage_kind, db_path, storage_dir)
        summary = monitor.get_summary()

        storage_stats = monitor.store.storage.get_stats()

        if output_format == "json":
            click.echo(json.dumps({**summary.to_dict(), "storage": storage_stats}, indent=2))
            return

        if summary.total == 0:
            console.print("[yellow]No performance metrics stored.[/yellow]")
            return

        table = Table(title="Performance Metrics")
        table.add_column("Type", style="cyan")
        table.add_column("Total", justify="right")
        table.add_column("Last hour", justify="right")
        for metric_type, count in sorted(summary.by_type.items()):
            table.add_row(metric_type, str(count), str(summary.recent_by_type.get(metric_type, 0)))
        table.add_row("[bold]all[/bold]", f"[bold]{summary.total}[/bold]", f"[bold]{summary.recent}[/bold]")
        console.print(table)

        start = datetime.fromtimestamp(summary.time_range[0]).strftime("%Y-%m-%d %H:%M:%S")
        console.print(f"Sessions: {summary.session_count} | Oldest metric: {start}")
        console.print(f"Storage: {storage_stats['backend']} ({storage_stats['keys']} keys, {storage_stats['bytes']} bytes)")

    run_guarded("status", body)


@click.command()
@storage_options
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Export file path (JSON format)",
)
def export(storage_kind: str, db_path: Optional[Path], storage_dir: Optional[Path], output: Optional[Path]):
    """Export summary, analytics, raw metrics and sessions as JSON."""
    def body() -> None:
        monitor = open_monitor(storage_kind, db_path, storage_dir)
        data = monitor.export()
        data["export_time"] = datetime.now().isoformat()

        if output:
            with open(output, "w") as f:
                json.dump(data, f, indent=2)
            console.print(f"[green]✓ Exported {len(data['raw_metrics'])} metrics to {output}[/green]")
        else:
            click.echo(json.dumps(data, indent=2))

    run_guarded("export", body)


@click.command()
@storage_options
@click.confirmation_option(prompt="Clear all stored performance data?")
def clear(storage_kind: str, db_path: Optional[Path], storage_dir: Optional[Path]):
    """Clear all stored performance data."""
    def body() -> None:
        monitor = open_monitor(storage_kind, db_path, storage_dir)
        monitor.clear()
        console.print("[green]✓ All performance data cleared[/green]")

    run_guarded("clear", body)
