"""
Periodic heap sampling with trend and leak analysis.
"""

import gc
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional

from .. import stats
from ..classifier import classify_memory_usage
from ..config import LEAK_DETECTION, MB, MONITORING
from ..leak_detection import LeakDetector
from ..models import MemorySample, MemoryTier, Trend
from ..monitor import PerformanceMonitor
from ..scheduler import ScheduledTask, Scheduler, ThreadScheduler
from ..sources import MemorySource

logger = logging.getLogger(__name__)

SAMPLER_COMPONENT = "MemorySampler"


@dataclass(frozen=True)
class HealthStatus:
    status: str  # good, normal, warning, critical or unknown
    message: str


class MemorySampler:
    """
    Samples heap usage on a fixed interval.

    Each tick appends a :class:`MemorySample` to a FIFO-capped history. Once
    the history holds ``trend_min_samples`` entries the trend is recomputed;
    once it holds the leak detector's ``min_samples`` the leak flag is
    recomputed from scratch. Alert and critical callbacks fire on every
    sample at or above their thresholds (critical takes precedence).
    """

    def __init__(
        self,
        monitor: PerformanceMonitor,
        source: MemorySource,
        scheduler: Optional[Scheduler] = None,
        interval: Optional[float] = None,
        history_size: Optional[int] = None,
        alert_threshold: Optional[int] = None,
        critical_threshold: Optional[int] = None,
        on_alert: Optional[Callable[[MemorySample], None]] = None,
        on_critical: Optional[Callable[[MemorySample], None]] = None,
        leak_detector: Optional[LeakDetector] = None,
        trend_min_samples: Optional[int] = None,
    ):
        settings = MONITORING["memory_sampling"]
        self.monitor = monitor
        self.source = source
        self._scheduler = scheduler
        self.interval = interval or settings["interval"]
        self.history_size = history_size or settings["history_size"]
        self.alert_threshold = alert_threshold or settings["alert_threshold"]
        self.critical_threshold = critical_threshold or settings["critical_threshold"]
        self.on_alert = on_alert
        self.on_critical = on_critical
        self.leak_detector = leak_detector or LeakDetector()
        self.trend_min_samples = trend_min_samples or LEAK_DETECTION["trend_min_samples"]

        if self.interval <= 0:
            raise ValueError("interval must be positive")

        self.history: deque = deque(maxlen=self.history_size)
        self.trend = Trend.STABLE
        self.direction = "stable"
        self.leak_detected = False
        self._task: Optional[ScheduledTask] = None
        self._lock = threading.RLock()

    @property
    def is_supported(self) -> bool:
        return self.source.is_supported

    @property
    def latest(self) -> Optional[MemorySample]:
        with self._lock:
            return self.history[-1] if self.history else None

    def get_history(self) -> List[MemorySample]:
        with self._lock:
            return list(self.history)

    def sample(self, event: str = "periodic_check") -> Optional[MemorySample]:
        """Take one reading. Never raises; returns None when no reading is available."""
        try:
            heap = self.source.read()
        except Exception as e:
            logger.warning(f"Memory read failed: {e}")
            return None
        if heap is None:
            return None

        sample = MemorySample(
            used=heap.used_bytes,
            total=heap.total_bytes,
            limit=heap.limit_bytes,
            timestamp=self.monitor.clock.now(),
        )

        with self._lock:
            self.history.append(sample)
            used_series = [s.used for s in self.history]
            if len(used_series) >= self.trend_min_samples:
                self.direction = stats.direction(used_series)
                self.trend = stats.trend(used_series)
            if len(used_series) >= self.leak_detector.min_samples:
                self.leak_detected = self.leak_detector.evaluate(used_series)

        self.monitor.record_memory(sample, event=event, component=SAMPLER_COMPONENT)
        self._check_thresholds(sample)
        return sample

    def _check_thresholds(self, sample: MemorySample) -> None:
        if sample.used >= self.critical_threshold:
            callback = self.on_critical
            logger.warning(f"Critical memory usage: {sample.used / MB:.0f}MB")
        elif sample.used >= self.alert_threshold:
            callback = self.on_alert
            logger.info(f"Elevated memory usage: {sample.used / MB:.0f}MB")
        else:
            return

        if callback is not None:
            try:
                callback(sample)
            except Exception as e:
                logger.warning(f"Memory threshold callback failed: {e}")

    # -- lifecycle --------------------------------------------------------

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = ThreadScheduler()
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.cancelled

    def start(self) -> bool:
        """Take an initial sample and schedule periodic ones. False if unsupported."""
        if not self.source.is_supported:
            logger.info("Heap introspection unsupported, memory sampler disabled")
            return False
        with self._lock:
            if self.running:
                return True
            self._task = self.scheduler.every(self.interval, self.sample, name="memory_sampler")
        self.sample("monitor_start")
        logger.info(f"Memory sampling started every {self.interval}s")
        return True

    def stop(self) -> None:
        """Cancel sampling and take a final best-effort sample."""
        with self._lock:
            task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        self.sample("monitor_stop")
        logger.info("Memory sampling stopped")

    # -- derived views ----------------------------------------------------

    def usage_percent(self) -> float:
        latest = self.latest
        return latest.usage_percent if latest else 0.0

    def get_tier(self) -> Optional[MemoryTier]:
        latest = self.latest
        return classify_memory_usage(latest.used) if latest else None

    def get_health_status(self) -> HealthStatus:
        latest = self.latest
        if latest is None:
            return HealthStatus("unknown", "No memory data")

        percent = latest.usage_percent
        if latest.used > self.critical_threshold or percent > 90:
            return HealthStatus("critical", "High memory usage")
        if latest.used > self.alert_threshold or percent > 70:
            return HealthStatus("warning", "Elevated memory usage")
        if latest.used > self.alert_threshold / 2 or percent > 50:
            return HealthStatus("normal", "Normal memory usage")
        return HealthStatus("good", "Low memory usage")

    def force_garbage_collection(self) -> int:
        """Run the host collector and sample again; returns objects collected."""
        collected = gc.collect()
        self.sample("gc_forced")
        logger.debug(f"Forced garbage collection freed {collected} objects")
        return collected
