"""
Core data model for performance telemetry.

Metrics are the source of truth. Sessions group the metrics of one page
load, memory samples feed leak detection, and suggestions are derived
values recomputed on every analysis run.
"""

import math
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type


class MetricType(Enum):
    """Kinds of performance observations."""
    WEB_VITAL = "web_vital"
    API = "api"
    COMPONENT = "component"
    NAVIGATION = "navigation"
    RESOURCE = "resource"
    INTERACTION = "interaction"
    MEMORY = "memory"


class Rating(Enum):
    """Qualitative bucket a metric value falls into."""
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs_improvement"
    POOR = "poor"
    UNKNOWN = "unknown"


class MemoryTier(Enum):
    """Heap usage tiers used by memory analytics."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class Trend(Enum):
    """Direction of a metric series, judged by whether it got better."""
    IMPROVING = "improving"
    DEGRADING = "degrading"
    STABLE = "stable"


class Severity(Enum):
    """Severity levels for optimization suggestions."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OptimizationCategory(Enum):
    """Rule categories of the optimizer."""
    WEB_VITALS = "web_vitals"
    API = "api"
    COMPONENTS = "components"
    MEMORY = "memory"
    BUNDLE = "bundle"
    IMAGES = "images"
    CACHING = "caching"
    NETWORK = "network"


# ---------------------------------------------------------------------------
# Typed metadata, one variant per metric type
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricMetadata:
    """Base metadata variant. Unknown host fields land in ``extra``."""
    extra: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Flatten typed fields and extras into a plain dict."""
        result = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is not None:
                result[f.name] = value
        return result

    def is_empty(self) -> bool:
        return not self.to_dict()

    def get(self, key: str, default: Any = None) -> Any:
        """Dict-style lookup across typed fields and extras."""
        return self.to_dict().get(key, default)


@dataclass(frozen=True)
class WebVitalMetadata(MetricMetadata):
    rating: Optional[str] = None
    element: Optional[str] = None
    url: Optional[str] = None
    session_entries: Optional[int] = None
    largest_shift: Optional[float] = None
    final: Optional[bool] = None


@dataclass(frozen=True)
class ApiMetadata(MetricMetadata):
    method: Optional[str] = None
    url: Optional[str] = None
    status: Optional[int] = None
    success: Optional[bool] = None
    response_size: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ComponentMetadata(MetricMetadata):
    component: Optional[str] = None
    event: Optional[str] = None
    render_number: Optional[int] = None
    render_count: Optional[int] = None
    slow: Optional[bool] = None
    success: Optional[bool] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class NavigationMetadata(MetricMetadata):
    from_route: Optional[str] = None
    to_route: Optional[str] = None
    navigation_type: Optional[str] = None
    transfer_size: Optional[int] = None


@dataclass(frozen=True)
class ResourceMetadata(MetricMetadata):
    resource_type: Optional[str] = None
    resource_name: Optional[str] = None
    size: Optional[int] = None
    initiator_type: Optional[str] = None


@dataclass(frozen=True)
class InteractionMetadata(MetricMetadata):
    interaction_type: Optional[str] = None
    target: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class MemoryMetadata(MetricMetadata):
    used_bytes: Optional[int] = None
    total_bytes: Optional[int] = None
    limit_bytes: Optional[int] = None
    event: Optional[str] = None
    component: Optional[str] = None


METADATA_TYPES: Dict[MetricType, Type[MetricMetadata]] = {
    MetricType.WEB_VITAL: WebVitalMetadata,
    MetricType.API: ApiMetadata,
    MetricType.COMPONENT: ComponentMetadata,
    MetricType.NAVIGATION: NavigationMetadata,
    MetricType.RESOURCE: ResourceMetadata,
    MetricType.INTERACTION: InteractionMetadata,
    MetricType.MEMORY: MemoryMetadata,
}


def empty_metadata(metric_type: MetricType) -> MetricMetadata:
    """Return the empty metadata variant for a metric type."""
    return METADATA_TYPES[metric_type]()


def metadata_from_dict(
    metric_type: MetricType,
    data: Optional[Mapping[str, Any]] = None,
) -> MetricMetadata:
    """
    Build the typed metadata variant for ``metric_type``.

    Known keys become typed fields, everything else is kept in ``extra``.
    An instance of another variant is re-keyed through its dict form.
    """
    cls = METADATA_TYPES[metric_type]
    if data is None:
        return cls()
    if isinstance(data, cls):
        return data
    if isinstance(data, MetricMetadata):
        data = data.to_dict()
    if not isinstance(data, Mapping):
        raise TypeError(f"{metric_type.value} metadata must be a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(cls)} - {"extra"}
    typed = {k: v for k, v in data.items() if k in known}
    extra = {k: v for k, v in data.items() if k not in known}
    return cls(extra=extra, **typed)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConsentLevel:
    """Consent flags captured when a metric was created."""
    performance: bool
    analytics: bool


@dataclass(frozen=True)
class ConsentState:
    """Process-wide consent choice owned by the consent collaborator."""
    performance_allowed: bool = False
    analytics_allowed: bool = False


@dataclass(frozen=True)
class HeapInfo:
    """Heap introspection reading in bytes."""
    used_bytes: int
    total_bytes: int
    limit_bytes: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "used_bytes": self.used_bytes,
            "total_bytes": self.total_bytes,
            "limit_bytes": self.limit_bytes,
        }


@dataclass(frozen=True)
class MetricDraft:
    """A metric before the store stamps identity and context onto it."""
    metric_type: MetricType
    name: str
    value: float
    metadata: MetricMetadata
    classification: Rating
    consent_level: ConsentLevel


@dataclass(frozen=True)
class Metric:
    """Single stored observation."""
    id: str
    metric_type: MetricType
    name: str
    value: float
    metadata: MetricMetadata
    classification: Rating
    timestamp: float
    session_id: str
    consent_level: ConsentLevel
    url: Optional[str] = None
    memory: Optional[HeapInfo] = None
    navigation: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.metric_type.value,
            "name": self.name,
            "value": self.value,
            "metadata": self.metadata.to_dict(),
            "classification": self.classification.value,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "consent_level": {
                "performance": self.consent_level.performance,
                "analytics": self.consent_level.analytics,
            },
            "url": self.url,
            "memory": self.memory.to_dict() if self.memory else None,
            "navigation": self.navigation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Metric":
        """Create from dictionary (JSON deserialization)."""
        metric_type = MetricType(data["type"])
        consent = data.get("consent_level") or {}
        if not isinstance(consent, dict):
            raise TypeError(f"consent_level must be a mapping, got {type(consent).__name__}")
        memory = data.get("memory")
        if memory is not None and not isinstance(memory, dict):
            raise TypeError(f"memory must be a mapping, got {type(memory).__name__}")
        return cls(
            id=str(data["id"]),
            metric_type=metric_type,
            name=data["name"],
            value=float(data["value"]),
            metadata=metadata_from_dict(metric_type, data.get("metadata") or {}),
            classification=Rating(data.get("classification", Rating.UNKNOWN.value)),
            timestamp=float(data["timestamp"]),
            session_id=str(data["session_id"]),
            consent_level=ConsentLevel(
                performance=bool(consent.get("performance", False)),
                analytics=bool(consent.get("analytics", False)),
            ),
            url=data.get("url"),
            memory=HeapInfo(**memory) if memory else None,
            navigation=data.get("navigation"),
        )


@dataclass
class Session:
    """One page-load lifetime and the metrics created during it."""
    id: str
    start_time: float
    url: Optional[str] = None
    viewport: Optional[Dict[str, int]] = None
    connection_info: Optional[Dict[str, Any]] = None
    user_agent: Optional[str] = None
    metrics: Dict[str, Metric] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize without embedding metrics, only their ids."""
        return {
            "id": self.id,
            "start_time": self.start_time,
            "url": self.url,
            "viewport": self.viewport,
            "connection_info": self.connection_info,
            "user_agent": self.user_agent,
            "metric_ids": list(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=str(data["id"]),
            start_time=float(data["start_time"]),
            url=data.get("url"),
            viewport=data.get("viewport"),
            connection_info=data.get("connection_info"),
            user_agent=data.get("user_agent"),
        )


@dataclass(frozen=True)
class MemorySample:
    """One heap reading taken by the memory sampler."""
    used: int
    total: int
    limit: int
    timestamp: float = field(default_factory=time.time)

    @property
    def usage_percent(self) -> float:
        if self.limit <= 0:
            return 0.0
        return self.used / self.limit * 100.0


@dataclass(frozen=True)
class Suggestion:
    """Optimization suggestion produced by a matching rule."""
    id: str
    category: OptimizationCategory
    name: str
    severity: Severity
    message: str
    recommendations: List[str]
    impact: str
    effort: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "name": self.name,
            "severity": self.severity.value,
            "message": self.message,
            "recommendations": list(self.recommendations),
            "impact": self.impact,
            "effort": self.effort,
            "timestamp": self.timestamp,
        }


def is_numeric(value: Any) -> bool:
    """True for finite int/float values (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
