"""Tests for perfadvisor.config module."""

import copy

import pytest

from perfadvisor.analytics import AnalyticsSnapshot, NetworkEstimate
from perfadvisor.classifier import classify_memory_usage
from perfadvisor.config import (
    LEAK_DETECTION,
    MEMORY_TIERS,
    MONITORING,
    OPTIMIZER,
    PERFORMANCE_THRESHOLDS,
    RuntimeOptions,
    apply_config,
    config_overrides,
    load_config_file,
)
from perfadvisor.error_handling import ConfigurationError
from perfadvisor.leak_detection import LeakDetector
from perfadvisor.models import MemoryTier, Trend
from perfadvisor.optimizer import has_too_many_requests
from perfadvisor.stats import trend
from perfadvisor.store import MetricStore


class TestDefaults:
    """Tests for the built-in configuration values."""

    def test_store_defaults(self):
        """Test buffer and flush defaults."""
        assert MONITORING["buffer_size"] == 1000
        assert MONITORING["flush_interval"] == 30.0
        assert MONITORING["memory_sampling"]["history_size"] == 100

    def test_severity_weights(self):
        """Test optimizer severity weights."""
        assert OPTIMIZER["severity_weights"] == {"critical": 25, "high": 15, "medium": 10, "low": 5}

    def test_leak_detection_gates(self):
        assert LEAK_DETECTION["min_samples"] == 20
        assert LEAK_DETECTION["trend_min_samples"] == 10

    def test_core_vital_bands(self):
        vitals = PERFORMANCE_THRESHOLDS["web_vital"]
        assert vitals["LCP"] == {"good": 2500, "needs_improvement": 4000}
        assert vitals["CLS"] == {"good": 0.1, "needs_improvement": 0.25}


class TestRuntimeOptions:
    """Tests for RuntimeOptions validation."""

    def test_default_initialization(self):
        """Test that every collector is enabled by default."""
        options = RuntimeOptions()
        assert options.enable_web_vitals
        assert options.enable_api_monitoring
        assert options.enable_component_tracking
        assert options.enable_memory_tracking
        assert not options.debug

    def test_zero_report_interval_allowed(self):
        assert RuntimeOptions(report_interval=0).report_interval == 0

    @pytest.mark.parametrize("field, value", [
        ("report_interval", -1),
        ("flush_interval", 0),
        ("memory_interval", -0.5),
    ])
    def test_invalid_intervals(self, field, value):
        """Test that invalid intervals are rejected."""
        with pytest.raises(ValueError):
            RuntimeOptions(**{field: value})


class TestLoadConfigFile:
    """Tests for YAML config overrides."""

    def test_merges_over_defaults(self, tmp_path):
        """Test that overrides are deep-merged and defaults are untouched."""
        path = tmp_path / "perfadvisor.yaml"
        path.write_text(
            "thresholds:\n"
            "  api:\n"
            "    '*': {good: 100, needs_improvement: 400}\n"
            "monitoring:\n"
            "  memory_sampling:\n"
            "    interval: 5\n"
        )
        config = load_config_file(path)

        assert config["thresholds"]["api"]["*"] == {"good": 100, "needs_improvement": 400}
        assert config["thresholds"]["web_vital"]["LCP"]["good"] == 2500
        assert config["monitoring"]["memory_sampling"]["interval"] == 5
        assert config["monitoring"]["memory_sampling"]["history_size"] == 100
        assert PERFORMANCE_THRESHOLDS["api"]["*"]["good"] == 200

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config_file(path)["optimizer"] == OPTIMIZER

    def test_unknown_section(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("telemetry:\n  endpoint: x\n")
        with pytest.raises(ConfigurationError, match="telemetry"):
            load_config_file(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("thresholds: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config_file(tmp_path / "nope.yaml")


class TestConfigOverrides:
    """Applied overrides reach the components that read the settings."""

    def write_config(self, tmp_path, text):
        path = tmp_path / "perfadvisor.yaml"
        path.write_text(text)
        return load_config_file(path)

    def test_overrides_change_behaviour_and_restore(self, tmp_path, storage, clock, scheduler):
        """Test trend, leak, store, runtime and optimizer settings inside the block."""
        config = self.write_config(
            tmp_path,
            "statistics:\n"
            "  trend_threshold_pct: 50\n"
            "leak_detection:\n"
            "  min_samples: 8\n"
            "monitoring:\n"
            "  buffer_size: 3\n"
            "  verbose: true\n"
            "  memory_sampling:\n"
            "    enabled: false\n"
            "optimizer:\n"
            "  max_requests: 5\n",
        )
        rising = [10, 10, 10, 10, 10, 12, 12, 12, 12, 12]
        history = [1, 1, 2, 2, 3, 3, 5, 5]
        busy = AnalyticsSnapshot(network=NetworkEstimate(total_requests=10))

        assert trend(rising) == Trend.DEGRADING
        assert not LeakDetector().evaluate(history)

        with config_overrides(config):
            assert trend(rising) == Trend.STABLE
            assert LeakDetector().evaluate(history)
            assert MetricStore(storage=storage, clock=clock, scheduler=scheduler, load=False).buffer_size == 3
            options = RuntimeOptions()
            assert options.debug
            assert not options.enable_memory_tracking
            assert has_too_many_requests(busy)

        assert MONITORING["buffer_size"] == 1000
        assert RuntimeOptions().enable_memory_tracking
        assert not has_too_many_requests(busy)
        assert trend(rising) == Trend.DEGRADING

    def test_apply_config_replaces_section(self, tmp_path):
        config = self.write_config(tmp_path, "memory_tiers:\n  low: 1\n")
        previous = copy.deepcopy(MEMORY_TIERS)
        try:
            apply_config({"memory_tiers": config["memory_tiers"]})
            assert classify_memory_usage(10) != MemoryTier.LOW
        finally:
            apply_config({"memory_tiers": previous})
        assert classify_memory_usage(10) == MemoryTier.LOW

    def test_section_must_be_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("optimizer: 5\n")
        with pytest.raises(ConfigurationError, match="optimizer"):
            load_config_file(path)
