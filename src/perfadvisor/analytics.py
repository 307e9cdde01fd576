"""
Analytics over the metric population.

Every function here takes a list of metrics and returns plain dataclasses;
nothing reads the store directly, so analysis runs on a snapshot copy and
never holds the store lock.
"""

import dataclasses
import math
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from . import stats
from .classifier import Classifier, classify_memory_usage
from .models import HeapInfo, MemoryTier, Metric, MetricType, Rating, Severity, Trend

WEB_VITAL_NAMES = ("LCP", "FID", "CLS", "TTFB", "FCP", "TTI")
CORE_VITALS = ("LCP", "FID", "CLS")

TREND_PERIODS = {
    "1h": 3600,
    "6h": 6 * 3600,
    "24h": 24 * 3600,
}

WEB_VITAL_SUGGESTIONS = {
    "LCP": "Optimize images, preload key resources, reduce server response times",
    "FID": "Minimize JavaScript execution time, code splitting, web workers",
    "CLS": "Set image dimensions, avoid dynamic content insertion, use transform animations",
    "TTFB": "Optimize server response times, use CDN, implement caching",
    "FCP": "Optimize critical rendering path, inline critical CSS, preload fonts",
}

SEVERITY_ORDER = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


def to_plain(value: Any) -> Any:
    """Recursively convert dataclasses and enums into JSON-ready values."""
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return to_plain(value.to_dict())
        return {f.name: to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(to_plain(k)): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class VitalStats:
    count: int
    latest: float
    average: float
    median: float
    p95: float
    trend: Trend
    classification: Rating


@dataclass(frozen=True)
class EndpointStats:
    count: int
    average: float
    median: float
    p95: float
    error_rate: float  # percent
    trend: Trend
    latest: float


@dataclass(frozen=True)
class ComponentStats:
    count: int
    average: float
    median: float
    p95: float
    slow_count: int
    trend: Trend
    classification: Rating


@dataclass(frozen=True)
class MemoryStats:
    count: int
    current: float
    average: float
    peak: float
    trend: Trend
    heap_info: Optional[HeapInfo]
    tier: MemoryTier


@dataclass(frozen=True)
class PeriodCounts:
    total: int
    web_vitals: int
    api: int
    components: int
    errors: int


@dataclass(frozen=True)
class Recommendation:
    """A per-entity finding from the analytics pass."""
    category: str
    severity: Severity
    message: str
    suggestion: str


@dataclass
class Analytics:
    """Everything the dashboard reads in one call."""
    summary: Dict[str, Any]
    web_vitals: Dict[str, VitalStats]
    api: Dict[str, EndpointStats]
    components: Dict[str, ComponentStats]
    memory: Optional[MemoryStats]
    trends: Dict[str, PeriodCounts]
    recommendations: List[Recommendation]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": to_plain(self.summary),
            "web_vitals": to_plain(self.web_vitals),
            "api": to_plain(self.api),
            "components": to_plain(self.components),
            "memory": to_plain(self.memory),
            "trends": to_plain(self.trends),
            "recommendations": to_plain(self.recommendations),
        }


def _values(metrics: Sequence[Metric]) -> List[float]:
    return [m.value for m in metrics]


def _is_error(metric: Metric) -> bool:
    status = metric.metadata.get("status")
    if metric.metadata.get("success") is False:
        return True
    return isinstance(status, int) and status >= 400


RATING_POINTS = {
    Rating.GOOD: 100,
    Rating.NEEDS_IMPROVEMENT: 50,
    Rating.POOR: 0,
}


def core_vitals_score(ratings: Dict[str, Rating]) -> int:
    """Average of 100/50/0 points over the measured core vitals, 0 if none."""
    points = [
        RATING_POINTS.get(ratings[name], 0)
        for name in CORE_VITALS
        if name in ratings
    ]
    if not points:
        return 0
    return int(math.floor(sum(points) / len(points) + 0.5))


def analyze_web_vitals(metrics: Sequence[Metric], classifier: Classifier) -> Dict[str, VitalStats]:
    vitals = [m for m in metrics if m.metric_type == MetricType.WEB_VITAL]
    analysis = {}
    for name in WEB_VITAL_NAMES:
        values = _values([m for m in vitals if m.name == name])
        if not values:
            continue
        analysis[name] = VitalStats(
            count=len(values),
            latest=values[-1],
            average=stats.mean(values),
            median=stats.median(values),
            p95=stats.percentile(values, 95),
            trend=stats.trend(values),
            classification=classifier.classify(MetricType.WEB_VITAL, name, values[-1]),
        )
    return analysis


def analyze_api(metrics: Sequence[Metric]) -> Dict[str, EndpointStats]:
    """Per-endpoint stats. The endpoint key is the metric name, ``METHOD url``."""
    grouped: Dict[str, List[Metric]] = defaultdict(list)
    for metric in metrics:
        if metric.metric_type == MetricType.API:
            grouped[metric.name].append(metric)

    analysis = {}
    for endpoint, endpoint_metrics in grouped.items():
        values = _values(endpoint_metrics)
        errors = sum(1 for m in endpoint_metrics if _is_error(m))
        analysis[endpoint] = EndpointStats(
            count=len(values),
            average=stats.mean(values),
            median=stats.median(values),
            p95=stats.percentile(values, 95),
            error_rate=errors / len(values) * 100,
            trend=stats.trend(values),
            latest=values[-1],
        )
    return analysis


def analyze_components(metrics: Sequence[Metric], classifier: Classifier) -> Dict[str, ComponentStats]:
    grouped: Dict[str, List[Metric]] = defaultdict(list)
    for metric in metrics:
        if metric.metric_type == MetricType.COMPONENT:
            grouped[metric.name].append(metric)

    analysis = {}
    for name, component_metrics in grouped.items():
        values = _values(component_metrics)
        band = classifier.table.lookup(MetricType.COMPONENT, name)
        slow_limit = band.needs_improvement if band else 50.0
        analysis[name] = ComponentStats(
            count=len(values),
            average=stats.mean(values),
            median=stats.median(values),
            p95=stats.percentile(values, 95),
            slow_count=sum(1 for v in values if v > slow_limit),
            trend=stats.trend(values),
            classification=classifier.classify(MetricType.COMPONENT, name, values[-1]),
        )
    return analysis


def analyze_memory(metrics: Sequence[Metric]) -> Optional[MemoryStats]:
    memory_metrics = [m for m in metrics if m.metric_type == MetricType.MEMORY]
    if not memory_metrics:
        return None

    values = _values(memory_metrics)
    latest = memory_metrics[-1]
    heap_info = latest.memory
    if heap_info is None and latest.metadata.get("used_bytes") is not None:
        heap_info = HeapInfo(
            used_bytes=int(latest.metadata.get("used_bytes")),
            total_bytes=int(latest.metadata.get("total_bytes") or 0),
            limit_bytes=int(latest.metadata.get("limit_bytes") or 0),
        )

    return MemoryStats(
        count=len(values),
        current=latest.value,
        average=stats.mean(values),
        peak=max(values),
        trend=stats.trend(values),
        heap_info=heap_info,
        tier=classify_memory_usage(latest.value),
    )


def analyze_trends(metrics: Sequence[Metric], now: float) -> Dict[str, PeriodCounts]:
    trends = {}
    for period, seconds in TREND_PERIODS.items():
        window = [m for m in metrics if m.timestamp >= now - seconds]
        trends[period] = PeriodCounts(
            total=len(window),
            web_vitals=sum(1 for m in window if m.metric_type == MetricType.WEB_VITAL),
            api=sum(1 for m in window if m.metric_type == MetricType.API),
            components=sum(1 for m in window if m.metric_type == MetricType.COMPONENT),
            errors=sum(1 for m in window if m.metadata.get("success") is False),
        )
    return trends


def build_recommendations(
    web_vitals: Dict[str, VitalStats],
    api: Dict[str, EndpointStats],
    components: Dict[str, ComponentStats],
    memory: Optional[MemoryStats],
    slow_api_ms: float = 1000.0,
    error_rate_pct: float = 5.0,
    slow_component_ms: float = 50.0,
) -> List[Recommendation]:
    """Simple per-entity findings, most severe first."""
    recommendations = []

    for endpoint, data in api.items():
        if data.average > slow_api_ms:
            recommendations.append(Recommendation(
                category="api",
                severity=Severity.HIGH,
                message=f'API endpoint "{endpoint}" is slow ({data.average:.0f}ms average)',
                suggestion="Consider optimizing database queries, adding caching, or implementing pagination",
            ))
        if data.error_rate > error_rate_pct:
            recommendations.append(Recommendation(
                category="api",
                severity=Severity.HIGH,
                message=f'API endpoint "{endpoint}" has high error rate ({data.error_rate:.1f}%)',
                suggestion="Check error logs and implement better error handling",
            ))

    for name, data in components.items():
        if data.average > slow_component_ms:
            recommendations.append(Recommendation(
                category="component",
                severity=Severity.MEDIUM,
                message=f'Component "{name}" is slow to render ({data.average:.0f}ms average)',
                suggestion="Consider memoization, code splitting, or virtualization",
            ))

    if memory is not None and memory.tier in (MemoryTier.HIGH, MemoryTier.CRITICAL):
        recommendations.append(Recommendation(
            category="memory",
            severity=Severity.HIGH,
            message=f"High memory usage detected ({memory.current / 1024 / 1024:.0f}MB)",
            suggestion="Check for memory leaks, optimize data structures, or implement cleanup",
        ))

    for vital, data in web_vitals.items():
        if data.classification == Rating.POOR:
            recommendations.append(Recommendation(
                category="web_vital",
                severity=Severity.HIGH,
                message=f"Poor {vital} score ({data.latest:g})",
                suggestion=WEB_VITAL_SUGGESTIONS.get(vital, "Review performance best practices"),
            ))

    # sorted() is stable, equal severities keep discovery order
    return sorted(recommendations, key=lambda r: SEVERITY_ORDER[r.severity], reverse=True)


# ---------------------------------------------------------------------------
# Optimizer input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MemoryStatus:
    """Current heap classification plus the leak flag."""
    used: int
    total: int
    limit: int
    usage_percent: float
    tier: MemoryTier
    trend: Trend = Trend.STABLE
    leak_detected: bool = False


@dataclass(frozen=True)
class NetworkEstimate:
    total_requests: int = 0
    average_response_time: float = 0.0
    error_rate: float = 0.0


@dataclass(frozen=True)
class BundleEstimate:
    estimated_size: int = 0
    script_count: int = 0
    chunk_count: int = 0


@dataclass
class AnalyticsSnapshot:
    """Synchronously gathered input to the rule engine."""
    web_vitals: Dict[str, VitalStats] = field(default_factory=dict)
    core_vitals_score: Optional[int] = None
    api: Dict[str, EndpointStats] = field(default_factory=dict)
    components: Dict[str, ComponentStats] = field(default_factory=dict)
    memory: Optional[MemoryStatus] = None
    network: NetworkEstimate = field(default_factory=NetworkEstimate)
    bundle: BundleEstimate = field(default_factory=BundleEstimate)
    timestamp: float = 0.0

    def vital(self, name: str) -> Optional[float]:
        """Latest value of a web vital, or None if never measured."""
        data = self.web_vitals.get(name)
        return data.latest if data else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "web_vitals": to_plain(self.web_vitals),
            "core_vitals_score": self.core_vitals_score,
            "api": to_plain(self.api),
            "components": to_plain(self.components),
            "memory": to_plain(self.memory),
            "network": to_plain(self.network),
            "bundle": to_plain(self.bundle),
            "timestamp": self.timestamp,
        }
