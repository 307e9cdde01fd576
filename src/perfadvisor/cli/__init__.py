"""CLI module for PerfAdvisor commands.

Commands live in separate modules and are registered on the ``main`` group
here.
"""

from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ..config import config_overrides, load_config_file
from ..error_handling import ConfigurationError
from ..log_setup import setup_logging
from .memory_cmd import sample_memory
from .metrics_cmd import clear, export, status
from .report_cmd import report, vitals
from .thresholds_cmd import thresholds


@click.group()
@click.version_option(version=__version__, prog_name="perfadvisor")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Logging level (default: WARNING)",
)
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Also write a timestamped log file to this directory",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config overriding thresholds, monitoring, statistics, leak detection and optimizer settings",
)
@click.pass_context
def main(ctx: click.Context, log_level: str, log_dir: Optional[Path], config_path: Optional[Path]) -> None:
    """📈 PerfAdvisor: performance telemetry and optimization advice."""
    setup_logging(log_dir, log_level)
    if config_path:
        try:
            config = load_config_file(config_path)
        except ConfigurationError as e:
            raise click.BadParameter(str(e), param_hint="--config") from e
        ctx.with_resource(config_overrides(config))


main.add_command(status)
main.add_command(report)
main.add_command(vitals)
main.add_command(export)
main.add_command(clear)
main.add_command(thresholds)
main.add_command(sample_memory)

__all__ = [
    "clear",
    "export",
    "main",
    "report",
    "sample_memory",
    "status",
    "thresholds",
    "vitals",
]
