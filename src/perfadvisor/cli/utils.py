"""Shared utilities for CLI commands."""

import functools
import sys
from pathlib import Path
from typing import Callable, Optional

import click

from ..classifier import Classifier
from ..consent import ConsentGate, StaticConsent
from ..error_handling import PerfAdvisorError
from ..monitor import PerformanceMonitor
from ..storage import KeyValueStorage, create_storage
from ..store import MetricStore


def storage_options(func: Callable) -> Callable:
    """Add the ``--storage/--db-path/--storage-dir`` options to a command."""
    @click.option(
        "--storage",
        "storage_kind",
        type=click.Choice(["sqlite", "json", "memory"]),
        default="sqlite",
        help="Durable storage holding the metric snapshot (default: sqlite)",
    )
    @click.option(
        "--db-path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="SQLite database path (default: ~/.perfadvisor_cache/storage.db)",
    )
    @click.option(
        "--storage-dir",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Directory for JSON storage (default: ~/.perfadvisor_cache)",
    )
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def open_storage(storage_kind: str, db_path: Optional[Path], storage_dir: Optional[Path]) -> KeyValueStorage:
    if storage_kind == "sqlite":
        return create_storage("sqlite", db_path=db_path)
    if storage_kind == "json":
        return create_storage("json", directory=storage_dir)
    return create_storage("memory")


def open_monitor(
    storage_kind: str,
    db_path: Optional[Path],
    storage_dir: Optional[Path],
    thresholds: Optional[Path] = None,
) -> PerformanceMonitor:
    """A monitor over the persisted snapshot; commands never record into it."""
    store = MetricStore(storage=open_storage(storage_kind, db_path, storage_dir))
    classifier = Classifier.from_file(thresholds) if thresholds else Classifier()
    return PerformanceMonitor(store, ConsentGate(StaticConsent()), classifier=classifier)


def handle_generic_error(command_name: str, error: Exception) -> None:
    """Handle generic command errors with consistent formatting."""
    click.echo(f"❌ {command_name} failed: {error}", err=True)
    sys.exit(1)


def run_guarded(command_name: str, func: Callable[[], None]) -> None:
    """Run a command body, turning library errors into a clean exit."""
    try:
        func()
    except (PerfAdvisorError, OSError) as e:
        handle_generic_error(command_name, e)


def format_ms(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{value:.1f}ms"


def format_vital(name: str, value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    if name.upper().startswith("CLS"):
        return f"{value:.3f}"
    return format_ms(value)


def format_bytes(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{value / (1024 * 1024):.1f} MB"
