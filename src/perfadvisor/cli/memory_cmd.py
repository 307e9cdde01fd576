"""
Sample this process's memory and run the trend and leak analysis on it.
"""

import json
import time
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from ..collectors import MemorySampler
from ..consent import ConsentGate, StaticConsent
from ..monitor import PerformanceMonitor
from ..sources import MemorySource, PsutilMemorySource, TracemallocMemorySource
from ..storage import InMemoryStorage
from ..store import MetricStore
from .utils import format_bytes, run_guarded

console = Console()


@click.command("sample-memory")
@click.option(
    "--count",
    "-n",
    type=click.IntRange(min=1),
    default=20,
    help="Number of samples to take (default: 20)",
)
@click.option(
    "--interval",
    "-i",
    type=click.FloatRange(min=0.0),
    default=0.5,
    help="Seconds between samples (default: 0.5)",
)
@click.option("--pid", type=int, default=None, help="Process to sample (default: this one)")
@click.option(
    "--source",
    "source_kind",
    type=click.Choice(["psutil", "tracemalloc"]),
    default="psutil",
    help="psutil process memory or Python allocations traced by tracemalloc",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def sample_memory(count: int, interval: float, pid: Optional[int], source_kind: str, output_format: str):
    """Sample process memory and report trend, tier and leak flag."""
    def body() -> None:
        if source_kind == "tracemalloc":
            if pid is not None:
                raise click.UsageError("--pid cannot be combined with --source tracemalloc")
            source: MemorySource = TracemallocMemorySource()
        else:
            source = PsutilMemorySource(pid)
        if not source.is_supported:
            click.echo(f"❌ Cannot read memory of process {pid}", err=True)
            raise SystemExit(1)

        try:
            result, health_message = _collect(source, count, interval)
        finally:
            if isinstance(source, TracemallocMemorySource):
                source.close()
        result["source"] = source_kind

        if output_format == "json":
            click.echo(json.dumps(result, indent=2))
            return

        table = Table(title=f"Memory ({result['samples']} samples, {source_kind})")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Used", format_bytes(result["used_bytes"]))
        table.add_row("Usage", f"{result['usage_percent']:.1f}%")
        table.add_row("Tier", result["tier"] or "N/A")
        table.add_row("Direction", result["direction"])
        table.add_row("Trend", result["trend"])
        leak = "[red]yes[/red]" if result["leak_detected"] else "[green]no[/green]"
        table.add_row("Leak suspected", leak)
        table.add_row("Health", f"{result['health']} ({health_message})")
        console.print(table)

    run_guarded("sample-memory", body)


def _collect(source: MemorySource, count: int, interval: float) -> Tuple[Dict[str, Any], str]:
    store = MetricStore(storage=InMemoryStorage(), memory_source=source, load=False)
    monitor = PerformanceMonitor(store, ConsentGate(StaticConsent()))
    sampler = MemorySampler(monitor, source, history_size=max(count, 1))

    for i in range(count):
        sampler.sample("cli_sample")
        if i < count - 1 and interval:
            time.sleep(interval)

    latest = sampler.latest
    tier = sampler.get_tier()
    health = sampler.get_health_status()
    result = {
        "samples": len(sampler.history),
        "used_bytes": latest.used if latest else None,
        "usage_percent": sampler.usage_percent(),
        "tier": tier.value if tier else None,
        "direction": sampler.direction,
        "trend": sampler.trend.value,
        "leak_detected": sampler.leak_detected,
        "health": health.status,
    }
    return result, health.message
