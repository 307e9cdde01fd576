"""
UI component timing: mount lifetime, renders, effects and operations.
"""

import functools
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, TypeVar

from ..config import COMPONENT_TRACKING
from ..error_handling import describe_error
from ..models import Metric, MetricType
from ..monitor import PerformanceMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ComponentTracker:
    """
    Per-component timing.

    Metric names are prefixed with the component name:
    ``<name>_mount_duration``, ``<name>_render``, ``<name>_effect_<effect>``
    and ``<name>_<operation>``. A render slower than ``slow_threshold_ms``
    (one 60fps frame by default) is flagged ``slow``.
    """

    def __init__(
        self,
        monitor: PerformanceMonitor,
        name: str,
        slow_threshold_ms: Optional[float] = None,
        track_memory: bool = False,
    ):
        self.monitor = monitor
        self.name = name
        self.slow_threshold_ms = (
            COMPONENT_TRACKING["slow_render_ms"] if slow_threshold_ms is None else slow_threshold_ms
        )
        self.track_memory = track_memory
        self.render_count = 0
        self._mount_ms: Optional[float] = None
        self._render_start_ms: Optional[float] = None
        self._effect_starts: Dict[str, float] = {}

    def _now(self) -> float:
        return self.monitor.clock.monotonic_ms()

    def mounted(self) -> None:
        self._mount_ms = self._now()

    def unmounted(self) -> Optional[Metric]:
        if self._mount_ms is None:
            return None
        duration = self._now() - self._mount_ms
        self._mount_ms = None
        return self.monitor.record(MetricType.COMPONENT, f"{self.name}_mount_duration", duration, {
            "component": self.name,
            "render_count": self.render_count,
            "event": "unmount",
        })

    def render_started(self) -> None:
        self._render_start_ms = self._now()

    def render_finished(self) -> Optional[Metric]:
        if self._render_start_ms is None:
            logger.debug(f"render_finished without render_started for {self.name}")
            return None
        duration = self._now() - self._render_start_ms
        self._render_start_ms = None
        self.render_count += 1

        metric = self.monitor.record(MetricType.COMPONENT, f"{self.name}_render", duration, {
            "component": self.name,
            "render_number": self.render_count,
            "slow": duration > self.slow_threshold_ms,
            "event": "render",
        })
        if self.track_memory:
            self.monitor.record_memory(component=self.name, event="render")
        return metric

    @contextmanager
    def render(self) -> Iterator[None]:
        """Time one render as a block."""
        self.render_started()
        try:
            yield
        finally:
            self.render_finished()

    def start_effect(self, effect_name: str) -> None:
        self._effect_starts[effect_name] = self._now()

    def end_effect(self, effect_name: str, **metadata: Any) -> Optional[Metric]:
        start = self._effect_starts.pop(effect_name, None)
        if start is None:
            return None
        return self.monitor.record(
            MetricType.COMPONENT,
            f"{self.name}_effect_{effect_name}",
            self._now() - start,
            {**metadata, "component": self.name, "event": "effect"},
        )

    @contextmanager
    def time_effect(self, effect_name: str, **metadata: Any) -> Iterator[None]:
        self.start_effect(effect_name)
        try:
            yield
        finally:
            self.end_effect(effect_name, **metadata)

    def measure(self, operation: str, **metadata: Any):
        """Context manager timing ``<name>_<operation>``."""
        return self.monitor.measure(f"{self.name}_{operation}", component=self.name, **metadata)

    async def measure_async(self, operation: str, fn: Callable[[], Awaitable[T]], **metadata: Any) -> T:
        return await self.monitor.measure_async(f"{self.name}_{operation}", fn, component=self.name, **metadata)

    def record_metric(self, metric_name: str, value: float, **metadata: Any) -> Optional[Metric]:
        return self.monitor.record(MetricType.COMPONENT, f"{self.name}_{metric_name}", value,
                                   {**metadata, "component": self.name})


def track_timing(monitor: PerformanceMonitor, metric_name: Optional[str] = None):
    """
    Decorator to record a function's execution time as a component metric.

    Args:
        monitor: Monitor that receives the metric
        metric_name: Custom metric name (defaults to the function's qualified name)

    Example:
        @track_timing(monitor, metric_name="article_list_filter")
        def filter_articles(articles, query):
            ...
    """
    def decorator(func: Callable) -> Callable:
        name = metric_name or func.__qualname__

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start_ms = monitor.clock.monotonic_ms()
            metadata: Dict[str, Any] = {"success": True}
            try:
                return func(*args, **kwargs)
            except Exception as e:
                metadata = {"success": False, **describe_error(e)}
                raise
            finally:
                monitor.record(MetricType.COMPONENT, name, monitor.clock.monotonic_ms() - start_ms, metadata)

        return wrapper
    return decorator
