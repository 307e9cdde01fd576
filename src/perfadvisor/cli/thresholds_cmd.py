"""
Show the classification tables in effect.
"""

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..classifier import Classifier
from .utils import format_bytes, run_guarded

console = Console()


@click.command()
@click.option(
    "--file",
    "thresholds_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Standalone YAML or JSON thresholds table",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def thresholds(thresholds_file: Optional[Path], output_format: str):
    """Display the active classification thresholds (after any --config overrides)."""
    def body() -> None:
        classifier = Classifier.from_file(thresholds_file) if thresholds_file else Classifier()

        mapping = classifier.table.to_mapping()
        if output_format == "json":
            click.echo(json.dumps(mapping, indent=2))
            return

        table = Table(title="Classification Thresholds")
        table.add_column("Type", style="cyan")
        table.add_column("Metric", style="magenta")
        table.add_column("Good ≤", justify="right")
        table.add_column("Needs improvement ≤", justify="right")
        for metric_type, entries in mapping.items():
            for name, band in entries.items():
                if metric_type == "memory":
                    good, needs = format_bytes(band["good"]), format_bytes(band["needs_improvement"])
                else:
                    good, needs = f"{band['good']:g}", f"{band['needs_improvement']:g}"
                table.add_row(metric_type, name, good, needs)
        console.print(table)

    run_guarded("thresholds", body)
