"""
Threshold-table classification of metric values.

Tables are data: they come from ``config.PERFORMANCE_THRESHOLDS`` or from a
YAML/JSON file, never from inline branching per metric.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .config import MEMORY_TIERS, PERFORMANCE_THRESHOLDS
from .error_handling import ConfigurationError
from .models import MemoryTier, MetricType, Rating

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass(frozen=True)
class ThresholdBand:
    """Two breakpoints: values up to ``good`` are good, up to
    ``needs_improvement`` need improvement, anything above is poor."""
    good: float
    needs_improvement: float

    def __post_init__(self):
        if self.good > self.needs_improvement:
            raise ConfigurationError(
                f"good threshold {self.good} exceeds needs_improvement {self.needs_improvement}"
            )

    def rate(self, value: float) -> Rating:
        if value <= self.good:
            return Rating.GOOD
        if value <= self.needs_improvement:
            return Rating.NEEDS_IMPROVEMENT
        return Rating.POOR


class ThresholdTable:
    """Mapping of ``(metric type, metric name)`` to a threshold band."""

    def __init__(self, bands: Optional[Dict[Tuple[MetricType, str], ThresholdBand]] = None):
        self._bands: Dict[Tuple[MetricType, str], ThresholdBand] = dict(bands or {})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Mapping[str, float]]]) -> "ThresholdTable":
        """
        Build a table from ``{type: {name: {good, needs_improvement}}}``.

        Raises:
            ConfigurationError: On unknown metric types or missing breakpoints.
        """
        bands = {}
        for type_key, entries in data.items():
            try:
                metric_type = MetricType(type_key)
            except ValueError as e:
                raise ConfigurationError(f"Unknown metric type in thresholds: {type_key}", cause=e) from e

            for name, limits in entries.items():
                try:
                    band = ThresholdBand(
                        good=float(limits["good"]),
                        needs_improvement=float(limits["needs_improvement"]),
                    )
                except (KeyError, TypeError, ValueError) as e:
                    raise ConfigurationError(
                        f"Invalid thresholds for {type_key}/{name}",
                        cause=e,
                        context={"limits": limits},
                    ) from e
                bands[(metric_type, name)] = band
        return cls(bands)

    def lookup(self, metric_type: MetricType, name: str) -> Optional[ThresholdBand]:
        """Exact name first (case-insensitive), then the type's wildcard."""
        band = self._bands.get((metric_type, name))
        if band is None:
            band = self._bands.get((metric_type, name.upper()))
        if band is None:
            band = self._bands.get((metric_type, WILDCARD))
        return band

    def set_band(self, metric_type: MetricType, name: str, band: ThresholdBand) -> None:
        self._bands[(metric_type, name)] = band

    def to_mapping(self) -> Dict[str, Dict[str, Dict[str, float]]]:
        result: Dict[str, Dict[str, Dict[str, float]]] = {}
        for (metric_type, name), band in self._bands.items():
            result.setdefault(metric_type.value, {})[name] = {
                "good": band.good,
                "needs_improvement": band.needs_improvement,
            }
        return result

    def __len__(self) -> int:
        return len(self._bands)


class Classifier:
    """Maps ``(type, name, value)`` to a :class:`Rating`.

    Unknown combinations classify as ``Rating.UNKNOWN`` rather than raising.
    """

    def __init__(self, table: Optional[ThresholdTable] = None):
        self.table = table or ThresholdTable.from_mapping(PERFORMANCE_THRESHOLDS)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Classifier":
        """Load a threshold table from a ``.yaml``/``.yml`` or ``.json`` file."""
        path = Path(path)
        try:
            with open(path) as f:
                if path.suffix.lower() in (".yaml", ".yml"):
                    import yaml
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except Exception as e:
            raise ConfigurationError(f"Cannot load thresholds from {path}", cause=e) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Threshold file {path} must contain a mapping")

        logger.info(f"Loaded classification thresholds from {path}")
        return cls(ThresholdTable.from_mapping(data))

    def classify(self, metric_type: Union[MetricType, str], name: str, value: Any) -> Rating:
        try:
            metric_type = MetricType(metric_type)
        except ValueError:
            return Rating.UNKNOWN

        band = self.table.lookup(metric_type, name)
        if band is None:
            return Rating.UNKNOWN
        try:
            return band.rate(float(value))
        except (TypeError, ValueError):
            return Rating.UNKNOWN


def classify_memory_usage(used_bytes: float, tiers: Optional[Mapping[str, float]] = None) -> MemoryTier:
    """Bucket heap usage into low/normal/high/critical."""
    tiers = tiers or MEMORY_TIERS
    if used_bytes <= tiers["low"]:
        return MemoryTier.LOW
    if used_bytes <= tiers["normal"]:
        return MemoryTier.NORMAL
    if used_bytes <= tiers["high"]:
        return MemoryTier.HIGH
    return MemoryTier.CRITICAL
