"""PerfAdvisor: client-side performance telemetry and optimization advice."""

__version__ = "0.1.0"

from .analytics import Analytics, AnalyticsSnapshot
from .classifier import Classifier, ThresholdBand, ThresholdTable, classify_memory_usage
from .config import RuntimeOptions
from .consent import ConsentGate, ConsentManager, StaticConsent
from .leak_detection import LeakDetector
from .models import (
    MemorySample,
    Metric,
    MetricType,
    OptimizationCategory,
    Rating,
    Session,
    Severity,
    Suggestion,
    Trend,
)
from .monitor import PerformanceMonitor, SnapshotBuilder
from .optimizer import OptimizationRule, PerformanceOptimizer
from .runtime import PerformanceRuntime, init_performance_monitoring
from .storage import create_storage
from .store import MetricStore

__all__ = [
    "Analytics",
    "AnalyticsSnapshot",
    "Classifier",
    "ConsentGate",
    "ConsentManager",
    "LeakDetector",
    "MemorySample",
    "Metric",
    "MetricStore",
    "MetricType",
    "OptimizationCategory",
    "OptimizationRule",
    "PerformanceMonitor",
    "PerformanceOptimizer",
    "PerformanceRuntime",
    "Rating",
    "RuntimeOptions",
    "Session",
    "Severity",
    "SnapshotBuilder",
    "StaticConsent",
    "Suggestion",
    "ThresholdBand",
    "ThresholdTable",
    "Trend",
    "classify_memory_usage",
    "create_storage",
    "init_performance_monitoring",
    "__version__",
]
