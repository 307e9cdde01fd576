"""
Analysis commands: optimization report and web vital statistics.
"""

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import analytics
from ..models import MetricType, Severity
from ..monitor import SnapshotBuilder
from ..optimizer import PerformanceOptimizer
from .utils import format_vital, open_monitor, run_guarded, storage_options

console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "green",
}

thresholds_option = click.option(
    "--thresholds",
    "-t",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML or JSON classification thresholds to use instead of the defaults",
)


def _score_style(score: int) -> str:
    if score >= 90:
        return "green"
    if score >= 50:
        return "yellow"
    return "red"


@click.command()
@storage_options
@thresholds_option
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def report(
    storage_kind: str,
    db_path: Optional[Path],
    storage_dir: Optional[Path],
    thresholds: Optional[Path],
    output_format: str,
):
    """Run the optimization rules over the stored metrics."""
    def body() -> None:
        monitor = open_monitor(storage_kind, db_path, storage_dir, thresholds)
        optimizer = PerformanceOptimizer(clock=monitor.clock)
        result = optimizer.generate_report(SnapshotBuilder(monitor).build())

        if output_format == "json":
            click.echo(json.dumps(result.to_dict(), indent=2))
            return

        score = result.optimization_score
        console.print(Panel(
            f"[{_score_style(score)}]Optimization score: {score}/100[/{_score_style(score)}]"
            f"  |  Core web vitals: {result.snapshot.core_vitals_score}/100",
            title="Performance Report",
        ))

        if not result.suggestions:
            console.print("[green]✓ No optimization suggestions[/green]")
            return

        table = Table(title=f"Suggestions ({result.total_suggestions})")
        table.add_column("Severity")
        table.add_column("Category", style="cyan")
        table.add_column("Issue")
        table.add_column("Impact", style="magenta")
        table.add_column("Effort")
        for suggestion in result.suggestions:
            style = SEVERITY_STYLES[suggestion.severity]
            table.add_row(
                f"[{style}]{suggestion.severity.value.upper()}[/{style}]",
                suggestion.category.value,
                suggestion.message,
                suggestion.impact,
                suggestion.effort,
            )
        console.print(table)

        plan = result.action_plan
        for title, items in (
            ("Immediate", plan.immediate),
            ("Short term", plan.short_term),
            ("Long term", plan.long_term),
        ):
            if not items:
                continue
            console.print(f"\n[bold]{title}[/bold]")
            for suggestion in items:
                console.print(f"  • {suggestion.name}")
                for recommendation in suggestion.recommendations[:3]:
                    console.print(f"      - {recommendation}")

    run_guarded("report", body)


@click.command()
@storage_options
@thresholds_option
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def vitals(
    storage_kind: str,
    db_path: Optional[Path],
    storage_dir: Optional[Path],
    thresholds: Optional[Path],
    output_format: str,
):
    """Show web vital statistics (median, p95, trend, rating)."""
    def body() -> None:
        monitor = open_monitor(storage_kind, db_path, storage_dir, thresholds)
        metrics = monitor.store.get_by_type(MetricType.WEB_VITAL)
        stats = analytics.analyze_web_vitals(metrics, monitor.classifier)
        score = analytics.core_vitals_score({name: s.classification for name, s in stats.items()})

        if output_format == "json":
            click.echo(json.dumps({
                "vitals": analytics.to_plain(stats),
                "core_vitals_score": score,
            }, indent=2))
            return

        if not stats:
            console.print("[yellow]No web vitals stored.[/yellow]")
            return

        table = Table(title="Web Vitals")
        table.add_column("Vital", style="cyan")
        table.add_column("Count", justify="right")
        table.add_column("Latest", justify="right")
        table.add_column("Median", justify="right")
        table.add_column("P95", justify="right")
        table.add_column("Trend")
        table.add_column("Rating")
        for name, data in stats.items():
            table.add_row(
                name,
                str(data.count),
                format_vital(name, data.latest),
                format_vital(name, data.median),
                format_vital(name, data.p95),
                data.trend.value,
                data.classification.value,
            )
        console.print(table)
        console.print(f"Core web vitals score: {score}/100")

    run_guarded("vitals", body)
