"""
Composition root for performance monitoring.

:class:`PerformanceRuntime` owns the store, the collectors, the optimizer and
every periodic task. Nothing here is a module-level singleton; hosts create a
runtime, call :meth:`PerformanceRuntime.start` and keep the reference.

Example:
    runtime = init_performance_monitoring(
        RuntimeOptions(report_interval=0),
        consent=StaticConsent(),
        storage=InMemoryStorage(),
    )
    runtime.web_vitals_source.push(entries)
    report = runtime.get_report()
    runtime.stop()
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .analytics import Analytics
from .classifier import Classifier
from .collectors import ApiTracker, ComponentTracker, MemorySampler, VitalReading, WebVitalsCollector
from .config import MONITORING, RuntimeOptions
from .consent import ConsentGate, ConsentManager, ConsentProvider
from .error_handling import ErrorLevel, PersistenceError, handle_error
from .models import Severity
from .monitor import PerformanceMonitor, SnapshotBuilder
from .optimizer import OptimizationReport, PerformanceOptimizer
from .scheduler import Clock, ScheduledTask, Scheduler, ThreadScheduler
from .sources import EntryBuffer, MemorySource, NavigationSource, PsutilMemorySource, WebVitalsSource
from .storage import InMemoryStorage, KeyValueStorage, create_storage
from .store import MetricStore

logger = logging.getLogger(__name__)

PerformanceDataCallback = Callable[[Dict[str, Any]], None]


def default_storage() -> KeyValueStorage:
    """
    Durable storage as configured in ``MONITORING["storage"]``.

    When the configured storage cannot be opened (unwritable home directory,
    broken database file) collection continues in memory only.
    """
    settings = MONITORING["storage"]
    kind = settings["kind"]
    try:
        if kind == "sqlite":
            return create_storage(kind, db_path=settings["db_path"], quota_bytes=settings["quota_bytes"])
        if kind == "json":
            return create_storage(kind, directory=settings["directory"])
        return create_storage(kind, quota_bytes=settings["quota_bytes"])
    except Exception as e:
        handle_error(e, f"open {kind} storage", PersistenceError, ErrorLevel.WARNING,
                     logger=logger, reraise=False)
        return InMemoryStorage(quota_bytes=settings["quota_bytes"])


class PerformanceRuntime:
    """Wires storage, consent, store, collectors and the optimizer together."""

    def __init__(
        self,
        options: Optional[RuntimeOptions] = None,
        storage: Optional[KeyValueStorage] = None,
        consent: Optional[ConsentProvider] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        web_vitals_source: Optional[WebVitalsSource] = None,
        memory_source: Optional[MemorySource] = None,
        environment: Optional[NavigationSource] = None,
        classifier: Optional[Classifier] = None,
        optimizer: Optional[PerformanceOptimizer] = None,
        on_performance_data: Optional[PerformanceDataCallback] = None,
    ):
        self.options = options or RuntimeOptions()
        self.scheduler = scheduler or ThreadScheduler()
        # A virtual-time scheduler brings its own clock
        clock = clock or getattr(self.scheduler, "clock", None)
        self.storage = storage or default_storage()
        self.consent = consent or ConsentManager(storage=self.storage, clock=clock)
        self.web_vitals_source = web_vitals_source or EntryBuffer()
        self.memory_source = memory_source or PsutilMemorySource()
        self.on_performance_data = on_performance_data

        self.store = MetricStore(
            storage=self.storage,
            clock=clock,
            scheduler=self.scheduler,
            environment=environment,
            memory_source=self.memory_source,
            flush_interval=self.options.flush_interval,
        )
        self.monitor = PerformanceMonitor(
            self.store,
            ConsentGate(self.consent),
            classifier=classifier,
            enabled=MONITORING["enabled"],
        )
        self.optimizer = optimizer or PerformanceOptimizer(clock=self.store.clock)

        self.web_vitals: Optional[WebVitalsCollector] = None
        if self.options.enable_web_vitals:
            self.web_vitals = WebVitalsCollector(self.monitor, self.web_vitals_source)

        self.memory_sampler: Optional[MemorySampler] = None
        if self.options.enable_memory_tracking:
            self.memory_sampler = MemorySampler(
                self.monitor,
                self.memory_source,
                scheduler=self.scheduler,
                interval=self.options.memory_interval,
            )

        self.api: Optional[ApiTracker] = ApiTracker(self.monitor) if self.options.enable_api_monitoring else None

        self.snapshot_builder = SnapshotBuilder(
            self.monitor,
            web_vitals=self.web_vitals,
            memory_sampler=self.memory_sampler,
        )

        self._tasks: List[ScheduledTask] = []
        self._unsubscribers: List[Callable[[], None]] = []
        self.started = False

    # -- lifecycle --------------------------------------------------------

    def start(self) -> "PerformanceRuntime":
        """Start collectors and periodic tasks. Collector failures disable only that collector."""
        if self.started:
            return self
        logger.info("Initializing performance monitoring")

        self._tasks.append(self.store.start_periodic_flush())

        if self.web_vitals is not None:
            try:
                if self.web_vitals.start():
                    self._unsubscribers.append(self.web_vitals.on_vital(self._on_vital))
                    logger.info("Web vitals monitoring initialized")
            except Exception as e:
                handle_error(e, "initialize web vitals monitoring", level=ErrorLevel.WARNING,
                             logger=logger, reraise=False)

        if self.memory_sampler is not None:
            try:
                if self.memory_sampler.start():
                    logger.info("Memory monitoring initialized")
            except Exception as e:
                handle_error(e, "initialize memory monitoring", level=ErrorLevel.WARNING,
                             logger=logger, reraise=False)

        if self.options.report_interval > 0:
            self._tasks.append(
                self.scheduler.every(self.options.report_interval, self._report_tick, name="report")
            )

        self.started = True
        return self

    def stop(self) -> None:
        """Cancel every task, take a final memory sample and flush. Never raises."""
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        if self.memory_sampler is not None:
            try:
                self.memory_sampler.stop()
            except Exception as e:
                logger.warning(f"Error stopping memory sampler: {e}")
        if self.web_vitals is not None:
            self.web_vitals.disconnect()

        self.store.stop()
        self.started = False
        logger.info("Performance monitoring stopped")

    def shutdown(self) -> None:
        """Stop and release the scheduler's threads."""
        self.stop()
        self.scheduler.shutdown()

    def __enter__(self) -> "PerformanceRuntime":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    # -- host events ------------------------------------------------------

    def on_page_hidden(self) -> None:
        """Record final CLS and a memory reading, then flush."""
        if self.web_vitals is not None:
            self.web_vitals.record_final_values()
        else:
            self.monitor.record_memory(event="page_hidden")
        self.store.flush()

    def on_page_visible(self) -> None:
        self.monitor.record_memory(event="page_visible")

    def track_component(self, name: str, **kwargs: Any) -> Optional[ComponentTracker]:
        """A tracker for one component, or None when component tracking is off."""
        if not self.options.enable_component_tracking:
            return None
        return ComponentTracker(self.monitor, name, **kwargs)

    # -- reads ------------------------------------------------------------

    def get_report(self) -> OptimizationReport:
        return self.optimizer.generate_report(self.snapshot_builder.build())

    def get_analytics(self) -> Analytics:
        return self.monitor.get_analytics()

    def clear_data(self) -> None:
        self.monitor.clear()

    # -- callbacks --------------------------------------------------------

    def _emit(self, kind: str, data: Any) -> None:
        if self.on_performance_data is None:
            return
        try:
            self.on_performance_data({"type": kind, "data": data})
        except Exception as e:
            logger.warning(f"Performance data callback failed: {e}")

    def _on_vital(self, reading: VitalReading) -> None:
        if self.options.debug:
            logger.info(f"Web vital {reading.name}: {reading.value:g} ({reading.rating.value})")
        self._emit("web_vital", reading)

    def _report_tick(self) -> None:
        try:
            report = self.get_report()
        except Exception as e:
            handle_error(e, "generate performance report", level=ErrorLevel.WARNING,
                         logger=logger, reraise=False)
            return

        if self.options.debug and report.suggestions:
            logger.info(
                f"Performance report: score={report.optimization_score}, "
                f"suggestions={report.total_suggestions}, "
                f"critical={report.count_by_severity(Severity.CRITICAL)}"
            )
        self._emit("performance_report", report)


def init_performance_monitoring(options: Optional[RuntimeOptions] = None, **kwargs) -> PerformanceRuntime:
    """Build a :class:`PerformanceRuntime` and start it."""
    return PerformanceRuntime(options, **kwargs).start()
