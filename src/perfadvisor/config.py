"""Configuration settings for PerfAdvisor."""

import copy
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping

MB = 1024 * 1024

# Classification tables: two breakpoints per metric ("good" and
# "needs_improvement"), anything above both is "poor". A "*" name applies to
# every metric of that type without a more specific entry.
PERFORMANCE_THRESHOLDS: Dict[str, Dict[str, Dict[str, float]]] = {
    "web_vital": {
        "LCP": {"good": 2500, "needs_improvement": 4000},
        "FID": {"good": 100, "needs_improvement": 300},
        "CLS": {"good": 0.1, "needs_improvement": 0.25},
        "CLS_FINAL": {"good": 0.1, "needs_improvement": 0.25},
        "TTFB": {"good": 800, "needs_improvement": 1800},
        "FCP": {"good": 1800, "needs_improvement": 3000},
        "TTI": {"good": 3800, "needs_improvement": 7300},
    },
    "api": {
        "*": {"good": 200, "needs_improvement": 1000},  # fast / slow, ms
    },
    "component": {
        "*": {"good": 16, "needs_improvement": 50},  # 60fps frame budget, ms
    },
    "memory": {
        "heap_usage": {"good": 50 * MB, "needs_improvement": 100 * MB},
    },
}

# Heap tiers for memory analytics (upper bounds, bytes)
MEMORY_TIERS = {
    "low": 50 * MB,
    "normal": 100 * MB,
    "high": 200 * MB,
}

MONITORING = {
    "enabled": True,  # Master switch for collection
    "buffer_size": 1000,  # Metrics kept in the in-memory buffer
    "flush_interval": 30.0,  # Seconds between snapshot flushes
    "persist_limit": 100,  # Metrics included in each persisted snapshot
    "storage_key": "performance_metrics",

    # Durable storage configuration
    "storage": {
        "kind": "sqlite",  # "memory", "sqlite" or "json"
        "db_path": None,  # None for ~/.perfadvisor_cache/storage.db
        "directory": None,  # JSON storage directory (None for ~/.perfadvisor_cache)
        "quota_bytes": 5 * MB,  # Mirrors a browser localStorage budget
    },

    # Memory sampler configuration
    "memory_sampling": {
        "enabled": True,
        "interval": 30.0,  # Seconds between heap samples
        "history_size": 100,  # Samples kept for trend/leak analysis
        "alert_threshold": 50 * MB,
        "critical_threshold": 100 * MB,
    },

    "report_interval": 60.0,  # Seconds between optimizer reports (0 disables)
    "verbose": False,  # Log every vital and non-empty report
}

STATISTICS = {
    "trend_window": 5,  # Samples per trend window
    "trend_threshold_pct": 10.0,  # Percent change before a trend is reported
}

LEAK_DETECTION = {
    "segments": 4,
    "growth_threshold_pct": 25.0,  # First-to-last segment growth that is suspicious
    "min_samples": 20,
    "trend_min_samples": 10,
}

OPTIMIZER = {
    "slow_api_average_ms": 1000.0,
    "api_error_rate_pct": 5.0,
    "slow_component_average_ms": 50.0,
    "memory_usage_pct": 70.0,
    "large_bundle_bytes": 5 * MB,
    "max_requests": 100,
    "estimated_script_bytes": 200 * 1024,  # Used when a script has no size
    "severity_weights": {
        "critical": 25,
        "high": 15,
        "medium": 10,
        "low": 5,
    },
}

CLS_SESSION_WINDOW = {
    "max_gap_ms": 1000.0,  # Gap to the previous shift in the session
    "max_duration_ms": 5000.0,  # Gap to the first shift in the session
}

COMPONENT_TRACKING = {
    "slow_render_ms": 16.0,  # 60fps frame budget
}


@dataclass
class RuntimeOptions:
    """Switches for the composition root."""

    # Defaults are read from MONITORING at instantiation time
    enable_web_vitals: bool = True
    enable_api_monitoring: bool = True
    enable_component_tracking: bool = True
    enable_memory_tracking: bool = field(default_factory=lambda: MONITORING["memory_sampling"]["enabled"])
    report_interval: float = field(default_factory=lambda: MONITORING["report_interval"])
    flush_interval: float = field(default_factory=lambda: MONITORING["flush_interval"])
    memory_interval: float = field(default_factory=lambda: MONITORING["memory_sampling"]["interval"])
    debug: bool = field(default_factory=lambda: MONITORING["verbose"])

    def __post_init__(self) -> None:
        if self.report_interval < 0:
            raise ValueError("report_interval must not be negative")
        if self.flush_interval <= 0:
            raise ValueError("flush_interval must be positive")
        if self.memory_interval <= 0:
            raise ValueError("memory_interval must be positive")


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# Config file section -> live settings dict it overrides
CONFIG_SECTIONS: Dict[str, Dict[str, Any]] = {
    "thresholds": PERFORMANCE_THRESHOLDS,
    "memory_tiers": MEMORY_TIERS,
    "monitoring": MONITORING,
    "statistics": STATISTICS,
    "leak_detection": LEAK_DETECTION,
    "optimizer": OPTIMIZER,
    "cls_session_window": CLS_SESSION_WINDOW,
    "component_tracking": COMPONENT_TRACKING,
}


def load_config_file(path: Path) -> Dict[str, Dict[str, Any]]:
    """
    Load YAML overrides and merge them over the current settings.

    Every key of ``CONFIG_SECTIONS`` is a recognised top-level section. The
    result holds every section, ready for :func:`apply_config`.

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    import yaml

    from .error_handling import ConfigurationError

    path = Path(path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {path}", cause=e) from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    unknown = set(raw) - set(CONFIG_SECTIONS)
    if unknown:
        raise ConfigurationError(
            f"Unknown config sections: {', '.join(sorted(unknown))}",
            context={"path": str(path)},
        )

    merged = {}
    for section, current in CONFIG_SECTIONS.items():
        overrides = raw.get(section) or {}
        if not isinstance(overrides, dict):
            raise ConfigurationError(f"Config section {section} must be a mapping", context={"path": str(path)})
        merged[section] = _deep_merge(current, overrides)
    return merged


def apply_config(config: Mapping[str, Mapping[str, Any]]) -> None:
    """
    Replace the live settings of every section present in ``config``.

    Components read these dicts when they are constructed (and the optimizer
    rules and trend math when they run), so objects created afterwards pick
    up the new values.
    """
    for section, values in config.items():
        target = CONFIG_SECTIONS[section]
        target.clear()
        target.update(copy.deepcopy(dict(values)))


@contextmanager
def config_overrides(config: Mapping[str, Mapping[str, Any]]) -> Iterator[None]:
    """Apply ``config`` for the duration of the block, then restore the previous settings."""
    previous = {section: copy.deepcopy(CONFIG_SECTIONS[section]) for section in config}
    apply_config(config)
    try:
        yield
    finally:
        apply_config(previous)
