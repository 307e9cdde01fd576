"""
Bounded metric store with session grouping and snapshot persistence.
"""

import heapq
import json
import logging
import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import MONITORING
from .error_handling import ErrorLevel, PersistenceError, handle_error
from .models import HeapInfo, Metric, MetricDraft, MetricType, Session
from .scheduler import Clock, ScheduledTask, Scheduler, SystemClock, ThreadScheduler
from .sources import MemorySource, NavigationSource
from .storage import InMemoryStorage, KeyValueStorage, dump_json

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
RECENT_WINDOW_SECONDS = 3600

Watcher = Callable[[Metric], None]


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass
class StoreSummary:
    """Counts over the current buffer."""
    total: int
    recent: int
    by_type: Dict[str, int]
    recent_by_type: Dict[str, int]
    session_count: int
    current_session_id: str
    time_range: Tuple[float, float]
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "recent": self.recent,
            "by_type": dict(self.by_type),
            "recent_by_type": dict(self.recent_by_type),
            "session_count": self.session_count,
            "current_session_id": self.current_session_id,
            "time_range": {"start": self.time_range[0], "end": self.time_range[1]},
            **self.extra,
        }


class MetricStore:
    """
    Global metric buffer plus the registry of sessions.

    The buffer holds at most ``buffer_size`` metrics. When a record pushes it
    over capacity the oldest metrics by timestamp are evicted, whatever their
    type. Watchers are notified synchronously after each record.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        environment: Optional[NavigationSource] = None,
        memory_source: Optional[MemorySource] = None,
        buffer_size: Optional[int] = None,
        flush_interval: Optional[float] = None,
        persist_limit: Optional[int] = None,
        storage_key: Optional[str] = None,
        load: bool = True,
    ):
        """
        Initialize the store.

        Args:
            storage: Durable storage for snapshots (defaults to InMemoryStorage)
            clock: Time source (defaults to SystemClock)
            scheduler: Scheduler for periodic flushes (defaults to ThreadScheduler)
            environment: Navigation context for sessions and metrics
            memory_source: Heap introspection for per-metric memory snapshots
            buffer_size: Maximum metrics kept in memory
            flush_interval: Seconds between periodic flushes
            persist_limit: Most recent metrics included in each snapshot
            storage_key: Key of the snapshot in durable storage
            load: Restore a previously persisted snapshot
        """
        self.storage = storage or InMemoryStorage()
        self.clock = clock or SystemClock()
        self._scheduler = scheduler
        self.environment = environment
        self.memory_source = memory_source
        self.buffer_size = buffer_size or MONITORING["buffer_size"]
        self.flush_interval = flush_interval or MONITORING["flush_interval"]
        self.persist_limit = MONITORING["persist_limit"] if persist_limit is None else persist_limit
        self.storage_key = storage_key or MONITORING["storage_key"]

        if self.buffer_size <= 0:
            raise ValueError("buffer_size must be positive")

        self.lock = threading.RLock()
        self._metrics: Dict[str, Metric] = {}
        self._order: Dict[str, int] = {}
        self._seq = 0
        self._sessions: Dict[str, Session] = {}
        self._watchers: List[Watcher] = []
        self._flush_task: Optional[ScheduledTask] = None
        self.evicted_count = 0

        self._current_session = self._create_session()

        if load:
            self.load()

    # -- sessions ---------------------------------------------------------

    def _create_session(self) -> Session:
        env = self.environment
        session = Session(
            id=_new_id(),
            start_time=self.clock.now(),
            url=env.url if env else None,
            viewport=env.viewport() if env else None,
            connection_info=env.connection_info() if env else None,
            user_agent=env.user_agent() if env else None,
        )
        self._sessions[session.id] = session
        logger.debug(f"Started performance session {session.id}")
        return session

    @property
    def current_session(self) -> Session:
        return self._current_session

    def get_sessions(self) -> List[Session]:
        with self.lock:
            return list(self._sessions.values())

    # -- recording --------------------------------------------------------

    def _memory_snapshot(self) -> Optional[HeapInfo]:
        source = self.memory_source
        if source is None or not source.is_supported:
            return None
        try:
            return source.read()
        except Exception as e:
            logger.debug(f"Memory snapshot unavailable: {e}")
            return None

    def _navigation_snapshot(self) -> Optional[Dict[str, float]]:
        if self.environment is None:
            return None
        try:
            return self.environment.navigation_timing()
        except Exception as e:
            logger.debug(f"Navigation timing unavailable: {e}")
            return None

    def record(self, draft: MetricDraft) -> Metric:
        """Stamp identity and context onto ``draft`` and store it."""
        memory = self._memory_snapshot()
        navigation = self._navigation_snapshot()

        with self.lock:
            session = self._current_session
            metric = Metric(
                id=_new_id(),
                metric_type=draft.metric_type,
                name=draft.name,
                value=draft.value,
                metadata=draft.metadata,
                classification=draft.classification,
                timestamp=self.clock.now(),
                session_id=session.id,
                consent_level=draft.consent_level,
                url=self.environment.url if self.environment else None,
                memory=memory,
                navigation=navigation,
            )
            self._insert(metric)
            session.metrics[metric.id] = metric
            self._prune()
            watchers = list(self._watchers)

        self._notify(watchers, metric)
        return metric

    def _insert(self, metric: Metric) -> None:
        self._metrics[metric.id] = metric
        self._order[metric.id] = self._seq
        self._seq += 1

    def _prune(self) -> None:
        overflow = len(self._metrics) - self.buffer_size
        if overflow <= 0:
            return

        oldest = heapq.nsmallest(
            overflow,
            self._metrics.values(),
            key=lambda m: (m.timestamp, self._order[m.id]),
        )
        for metric in oldest:
            del self._metrics[metric.id]
            del self._order[metric.id]
            session = self._sessions.get(metric.session_id)
            if session is not None:
                session.metrics.pop(metric.id, None)
        self.evicted_count += overflow

    def _notify(self, watchers: List[Watcher], metric: Metric) -> None:
        for watcher in watchers:
            try:
                watcher(metric)
            except Exception as e:
                logger.warning(f"Performance watcher error: {e}")

    def add_watcher(self, callback: Watcher) -> Callable[[], None]:
        """Register a watcher; returns a callable that unregisters it."""
        with self.lock:
            self._watchers.append(callback)

        def unsubscribe() -> None:
            with self.lock:
                if callback in self._watchers:
                    self._watchers.remove(callback)

        return unsubscribe

    # -- queries ----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._metrics)

    def get_all(self) -> List[Metric]:
        """Snapshot copy of the buffer in insertion order."""
        with self.lock:
            return list(self._metrics.values())

    def get(self, metric_id: str) -> Optional[Metric]:
        with self.lock:
            return self._metrics.get(metric_id)

    def get_by_type(self, metric_type: MetricType) -> List[Metric]:
        metric_type = MetricType(metric_type)
        return [m for m in self.get_all() if m.metric_type == metric_type]

    def get_by_time_range(self, start: float, end: float) -> List[Metric]:
        """Metrics with ``start <= timestamp <= end``."""
        return [m for m in self.get_all() if start <= m.timestamp <= end]

    def get_summary(self) -> StoreSummary:
        metrics = self.get_all()
        now = self.clock.now()
        recent = [m for m in metrics if m.timestamp >= now - RECENT_WINDOW_SECONDS]

        with self.lock:
            session_count = len(self._sessions)
            current_id = self._current_session.id

        return StoreSummary(
            total=len(metrics),
            recent=len(recent),
            by_type=dict(Counter(m.metric_type.value for m in metrics)),
            recent_by_type=dict(Counter(m.metric_type.value for m in recent)),
            session_count=session_count,
            current_session_id=current_id,
            time_range=(min((m.timestamp for m in metrics), default=now), now),
        )

    # -- persistence ------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """The JSON-ready document written by :meth:`flush`."""
        with self.lock:
            metrics = list(self._metrics.values())
            if self.persist_limit:
                metrics = metrics[-self.persist_limit:]
            else:
                metrics = []
            return {
                "version": SNAPSHOT_VERSION,
                "timestamp": self.clock.now(),
                "current_session_id": self._current_session.id,
                "sessions": [s.to_dict() for s in self._sessions.values()],
                "metrics": [m.to_dict() for m in metrics],
            }

    def flush(self) -> bool:
        """Persist a snapshot; failures are logged and reported as False."""
        try:
            payload = dump_json(self.snapshot())
            self.storage.set(self.storage_key, payload)
        except Exception as e:
            handle_error(e, "flush performance metrics", PersistenceError, ErrorLevel.WARNING,
                         context={"storage_key": self.storage_key}, logger=logger, reraise=False)
            return False
        logger.debug(f"Flushed performance snapshot ({len(self)} metrics buffered)")
        return True

    def load(self) -> int:
        """
        Restore a persisted snapshot into the buffer.

        The current session stays current; restored sessions are kept for
        history. Returns the number of metrics restored.
        """
        try:
            raw = self.storage.get(self.storage_key)
        except Exception as e:
            handle_error(e, "load stored performance metrics", PersistenceError, ErrorLevel.WARNING,
                         logger=logger, reraise=False)
            return 0
        if not raw:
            return 0

        try:
            data = json.loads(raw)
            session_dicts = data.get("sessions") or []
            metric_dicts = data.get("metrics") or []
            if not isinstance(session_dicts, list) or not isinstance(metric_dicts, list):
                raise ValueError("sessions and metrics must be lists")
        except (ValueError, AttributeError) as e:
            logger.warning(f"Failed to load stored performance metrics: {e}")
            return 0

        restored = 0
        with self.lock:
            for item in session_dicts:
                try:
                    session = Session.from_dict(item)
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning(f"Skipping malformed stored session: {e}")
                    continue
                if session.id not in self._sessions:
                    self._sessions[session.id] = session

            for item in metric_dicts:
                try:
                    metric = Metric.from_dict(item)
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning(f"Skipping malformed stored metric: {e}")
                    continue
                if metric.id in self._metrics:
                    continue
                self._insert(metric)
                session = self._sessions.get(metric.session_id)
                if session is not None:
                    session.metrics[metric.id] = metric
                restored += 1
            self._prune()

        if restored:
            logger.info(f"Restored {restored} stored performance metrics")
        return restored

    # -- lifecycle --------------------------------------------------------

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = ThreadScheduler()
        return self._scheduler

    def start_periodic_flush(self) -> ScheduledTask:
        """Flush every ``flush_interval`` seconds until :meth:`stop`."""
        with self.lock:
            if self._flush_task is None or self._flush_task.cancelled:
                self._flush_task = self.scheduler.every(self.flush_interval, self.flush, name="flush")
            return self._flush_task

    def stop(self) -> bool:
        """Cancel the periodic flush and write a final snapshot. Never raises."""
        with self.lock:
            task, self._flush_task = self._flush_task, None
        if task is not None:
            task.cancel()
        return self.flush()

    def clear(self) -> None:
        """Empty buffer, sessions and durable snapshot; start a new session."""
        with self.lock:
            self._metrics.clear()
            self._order.clear()
            self._sessions.clear()
            self.evicted_count = 0
            self._current_session = self._create_session()

        try:
            self.storage.remove(self.storage_key)
        except Exception as e:
            handle_error(e, "remove stored performance metrics", PersistenceError, ErrorLevel.WARNING,
                         logger=logger, reraise=False)
        logger.info("Cleared performance data")
