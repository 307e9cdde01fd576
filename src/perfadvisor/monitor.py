"""
Recording facade and analytics entry point.

:class:`PerformanceMonitor` is the single write path into the store: it
consults the consent gate, validates the value, classifies it and strips
metadata when only performance consent is present. Dashboards read through
:meth:`PerformanceMonitor.get_analytics` and :class:`SnapshotBuilder`.
"""

import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, TypeVar, Union

from . import analytics
from .analytics import (
    Analytics,
    AnalyticsSnapshot,
    BundleEstimate,
    MemoryStatus,
    NetworkEstimate,
)
from .classifier import Classifier, classify_memory_usage
from .config import OPTIMIZER
from .consent import ConsentGate
from .error_handling import ErrorLevel, describe_error, handle_error
from .models import (
    Metric,
    MetricDraft,
    MetricMetadata,
    MetricType,
    MemorySample,
    empty_metadata,
    is_numeric,
    metadata_from_dict,
)
from .scheduler import Clock
from .store import MetricStore, StoreSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Timer:
    """Measures one duration, started on construction."""

    def __init__(self, monitor: "PerformanceMonitor", name: str, metric_type: MetricType):
        self.monitor = monitor
        self.name = name
        self.metric_type = metric_type
        self.start_ms = monitor.clock.monotonic_ms()

    def elapsed_ms(self) -> float:
        return self.monitor.clock.monotonic_ms() - self.start_ms

    def end(self, **metadata: Any) -> Optional[Metric]:
        end_ms = self.monitor.clock.monotonic_ms()
        return self.monitor.record(
            self.metric_type,
            self.name,
            end_ms - self.start_ms,
            {**metadata, "start_time": self.start_ms, "end_time": end_ms},
        )


class PerformanceMonitor:
    """Consent-gated recording into a :class:`MetricStore` plus analytics."""

    def __init__(
        self,
        store: MetricStore,
        gate: ConsentGate,
        classifier: Optional[Classifier] = None,
        enabled: bool = True,
    ):
        self.store = store
        self.gate = gate
        self.classifier = classifier or Classifier()
        self.enabled = enabled

    @property
    def clock(self) -> Clock:
        return self.store.clock

    def record(
        self,
        metric_type: Union[MetricType, str],
        name: str,
        value: Any,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Metric]:
        """
        Record one observation.

        Returns None, without touching the store, when collection is
        disabled, neither consent category is granted or the value is not
        a finite number.
        """
        if not self.enabled:
            return None

        try:
            metric_type = MetricType(metric_type)
        except ValueError:
            logger.warning(f"Unknown metric type {metric_type!r} for {name}")
            return None

        permission = self.gate.is_collection_allowed()
        if not permission.any_allowed:
            logger.debug(f"Performance metric skipped - no consent: {metric_type.value}:{name}")
            return None

        if not is_numeric(value):
            logger.warning(f"Ignoring non-numeric value {value!r} for {metric_type.value}:{name}")
            return None

        if metadata is not None and not isinstance(metadata, (Mapping, MetricMetadata)):
            logger.warning(f"Ignoring non-mapping metadata {type(metadata).__name__} for {metric_type.value}:{name}")
            metadata = None

        if permission.analytics:
            typed_metadata = metadata_from_dict(metric_type, metadata)
        else:
            typed_metadata = empty_metadata(metric_type)

        draft = MetricDraft(
            metric_type=metric_type,
            name=name,
            value=float(value),
            metadata=typed_metadata,
            classification=self.classifier.classify(metric_type, name, value),
            consent_level=permission.to_consent_level(),
        )
        try:
            return self.store.record(draft)
        except Exception as e:
            handle_error(e, f"record {metric_type.value}:{name}", level=ErrorLevel.ERROR,
                         logger=logger, reraise=False)
            return None

    # -- typed helpers ----------------------------------------------------

    def record_api(self, method: str, url: str, duration: float, status: int, **metadata: Any) -> Optional[Metric]:
        method = method.upper()
        metadata.setdefault("success", metadata.get("error") is None and status < 400)
        return self.record(MetricType.API, f"{method} {url}", duration,
                           {**metadata, "method": method, "url": url, "status": status})

    def record_navigation(self, from_route: str, to_route: str, duration: float, **metadata: Any) -> Optional[Metric]:
        return self.record(MetricType.NAVIGATION, f"{from_route} -> {to_route}", duration,
                           {**metadata, "from_route": from_route, "to_route": to_route})

    def record_resource(
        self,
        resource_type: str,
        name: str,
        duration: float,
        size: Optional[int] = None,
        **metadata: Any,
    ) -> Optional[Metric]:
        return self.record(MetricType.RESOURCE, f"{resource_type}:{name}", duration,
                           {**metadata, "resource_type": resource_type, "resource_name": name, "size": size})

    def record_interaction(self, interaction_type: str, target: str, duration: float, **metadata: Any) -> Optional[Metric]:
        return self.record(MetricType.INTERACTION, f"{interaction_type}:{target}", duration,
                           {**metadata, "interaction_type": interaction_type, "target": target})

    def record_memory(self, sample: Optional[MemorySample] = None, **metadata: Any) -> Optional[Metric]:
        """Record ``heap_usage`` from ``sample`` or a fresh read of the store's memory source."""
        if sample is None:
            source = self.store.memory_source
            if source is None or not source.is_supported:
                return None
            try:
                heap = source.read()
            except Exception as e:
                logger.warning(f"Memory read failed: {e}")
                return None
            if heap is None:
                return None
            used, total, limit = heap.used_bytes, heap.total_bytes, heap.limit_bytes
        else:
            used, total, limit = sample.used, sample.total, sample.limit

        return self.record(MetricType.MEMORY, "heap_usage", used,
                           {**metadata, "used_bytes": used, "total_bytes": total, "limit_bytes": limit})

    # -- timing -----------------------------------------------------------

    def start_timing(self, name: str, metric_type: MetricType = MetricType.COMPONENT) -> Timer:
        return Timer(self, name, metric_type)

    @contextmanager
    def measure(self, name: str, metric_type: MetricType = MetricType.COMPONENT, **metadata: Any) -> Iterator[Timer]:
        """
        Time a block; the metric records ``success`` and re-raises errors.

        Example:
            with monitor.measure("search_index_build"):
                build_index()
        """
        timer = self.start_timing(name, metric_type)
        try:
            yield timer
        except Exception as e:
            timer.end(**metadata, success=False, **describe_error(e))
            raise
        timer.end(**metadata, success=True)

    async def measure_async(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        metric_type: MetricType = MetricType.COMPONENT,
        **metadata: Any,
    ) -> T:
        timer = self.start_timing(name, metric_type)
        try:
            result = await fn()
        except Exception as e:
            timer.end(**metadata, success=False, **describe_error(e))
            raise
        timer.end(**metadata, success=True)
        return result

    # -- reads ------------------------------------------------------------

    def add_watcher(self, callback: Callable[[Metric], None]) -> Callable[[], None]:
        return self.store.add_watcher(callback)

    def get_summary(self) -> StoreSummary:
        return self.store.get_summary()

    def get_analytics(self, metrics: Optional[List[Metric]] = None) -> Analytics:
        """Summaries, statistics, trends and recommendations in one pass."""
        if metrics is None:
            metrics = self.store.get_all()

        web_vitals = analytics.analyze_web_vitals(metrics, self.classifier)
        api = analytics.analyze_api(metrics)
        components = analytics.analyze_components(metrics, self.classifier)
        memory = analytics.analyze_memory(metrics)

        return Analytics(
            summary=self.store.get_summary().to_dict(),
            web_vitals=web_vitals,
            api=api,
            components=components,
            memory=memory,
            trends=analytics.analyze_trends(metrics, self.clock.now()),
            recommendations=analytics.build_recommendations(
                web_vitals,
                api,
                components,
                memory,
                slow_api_ms=OPTIMIZER["slow_api_average_ms"],
                error_rate_pct=OPTIMIZER["api_error_rate_pct"],
                slow_component_ms=OPTIMIZER["slow_component_average_ms"],
            ),
        )

    def export(self) -> Dict[str, Any]:
        """Full snapshot: summary, analytics, raw metrics and sessions."""
        metrics = self.store.get_all()
        return {
            "summary": self.store.get_summary().to_dict(),
            "analytics": self.get_analytics(metrics).to_dict(),
            "raw_metrics": [m.to_dict() for m in metrics],
            "sessions": [s.to_dict() for s in self.store.get_sessions()],
        }

    def clear(self) -> None:
        self.store.clear()


class SnapshotBuilder:
    """
    Gathers the :class:`AnalyticsSnapshot` the rule engine evaluates.

    Everything is read synchronously from already-cached state: the store
    buffer, the web vitals collector and the memory sampler's history.
    """

    def __init__(
        self,
        monitor: PerformanceMonitor,
        web_vitals: Optional[Any] = None,
        memory_sampler: Optional[Any] = None,
        estimated_script_bytes: Optional[int] = None,
    ):
        self.monitor = monitor
        self.web_vitals = web_vitals
        self.memory_sampler = memory_sampler
        self.estimated_script_bytes = estimated_script_bytes or OPTIMIZER["estimated_script_bytes"]

    def build(self, metrics: Optional[List[Metric]] = None) -> AnalyticsSnapshot:
        if metrics is None:
            metrics = self.monitor.store.get_all()

        classifier = self.monitor.classifier
        web_vitals = analytics.analyze_web_vitals(metrics, classifier)
        api = analytics.analyze_api(metrics)

        if self.web_vitals is not None:
            core_score = self.web_vitals.get_core_vitals_score()
        else:
            core_score = analytics.core_vitals_score(
                {name: data.classification for name, data in web_vitals.items()}
            )

        return AnalyticsSnapshot(
            web_vitals=web_vitals,
            core_vitals_score=core_score,
            api=api,
            components=analytics.analyze_components(metrics, classifier),
            memory=self._memory_status(metrics),
            network=self._network_estimate(api),
            bundle=self._bundle_estimate(metrics),
            timestamp=self.monitor.clock.now(),
        )

    def _memory_status(self, metrics: List[Metric]) -> Optional[MemoryStatus]:
        sampler = self.memory_sampler
        if sampler is not None and sampler.latest is not None:
            sample = sampler.latest
            return MemoryStatus(
                used=sample.used,
                total=sample.total,
                limit=sample.limit,
                usage_percent=sample.usage_percent,
                tier=classify_memory_usage(sample.used),
                trend=sampler.trend,
                leak_detected=sampler.leak_detected,
            )

        stats = analytics.analyze_memory(metrics)
        if stats is None or stats.heap_info is None:
            return None
        heap = stats.heap_info
        usage = heap.used_bytes / heap.limit_bytes * 100 if heap.limit_bytes > 0 else 0.0
        return MemoryStatus(
            used=heap.used_bytes,
            total=heap.total_bytes,
            limit=heap.limit_bytes,
            usage_percent=usage,
            tier=stats.tier,
            trend=stats.trend,
        )

    def _network_estimate(self, api: Dict[str, analytics.EndpointStats]) -> NetworkEstimate:
        if not api:
            return NetworkEstimate()
        endpoints = list(api.values())
        return NetworkEstimate(
            total_requests=sum(e.count for e in endpoints),
            average_response_time=sum(e.average for e in endpoints) / len(endpoints),
            error_rate=sum(e.error_rate for e in endpoints) / len(endpoints),
        )

    def _bundle_estimate(self, metrics: List[Metric]) -> BundleEstimate:
        # Resource names are "<type>:<url>", so scripts are found without metadata
        scripts = [
            m for m in metrics
            if m.metric_type == MetricType.RESOURCE and m.name.startswith("javascript:")
        ]
        size = 0
        for script in scripts:
            reported = script.metadata.get("size")
            size += int(reported) if is_numeric(reported) and reported > 0 else self.estimated_script_bytes
        return BundleEstimate(
            estimated_size=size,
            script_count=len(scripts),
            chunk_count=sum(1 for s in scripts if "chunk" in s.name),
        )
