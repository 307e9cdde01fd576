"""
Platform signal sources.

Collectors never talk to the host runtime directly. They consume three
capability interfaces, each of which may be unsupported on a given host:

    WebVitalsSource   performance-observer style entry subscription
    MemorySource      heap introspection
    NavigationSource  page/context information and navigation timing

The implementations here cover a host bridge that pushes entries
(:class:`EntryBuffer`), the current Python process (:class:`PsutilMemorySource`,
:class:`TracemallocMemorySource`) and fixed test doubles.
"""

import logging
import platform
import threading
import tracemalloc
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import psutil

from .error_handling import CapabilityUnavailableError
from .models import HeapInfo

logger = logging.getLogger(__name__)

# Entry types understood by the web vitals collector
LARGEST_CONTENTFUL_PAINT = "largest-contentful-paint"
FIRST_INPUT = "first-input"
LAYOUT_SHIFT = "layout-shift"
PAINT = "paint"
NAVIGATION = "navigation"
RESOURCE = "resource"

ENTRY_TYPES = (LARGEST_CONTENTFUL_PAINT, FIRST_INPUT, LAYOUT_SHIFT, PAINT, NAVIGATION, RESOURCE)


@dataclass(frozen=True)
class PerformanceEntry:
    """
    One performance timeline entry. All times are milliseconds relative to
    the start of the page load.

    ``timing`` carries the navigation/resource timing marks in snake_case
    (``request_start``, ``response_start``, ``load_event_end`` ...).
    """
    entry_type: str
    name: str = ""
    start_time: float = 0.0
    duration: float = 0.0
    value: Optional[float] = None  # layout-shift score
    had_recent_input: bool = False
    processing_start: Optional[float] = None
    element: Optional[str] = None
    url: Optional[str] = None
    navigation_type: Optional[str] = None
    initiator_type: Optional[str] = None
    transfer_size: Optional[int] = None
    timing: Dict[str, float] = field(default_factory=dict)

    def mark(self, name: str, default: float = 0.0) -> float:
        """Timing mark by name, ``default`` when absent."""
        return float(self.timing.get(name, default))


EntryCallback = Callable[[List[PerformanceEntry]], None]


class Observation:
    """Handle returned by :meth:`WebVitalsSource.observe`."""

    def __init__(self, entry_type: str, on_disconnect: Callable[["Observation"], None]):
        self.entry_type = entry_type
        self._on_disconnect = on_disconnect
        self.connected = True

    def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            self._on_disconnect(self)


class WebVitalsSource(ABC):
    """Performance-observer style subscription API."""

    @property
    @abstractmethod
    def is_supported(self) -> bool:
        pass

    @abstractmethod
    def observe(self, entry_type: str, callback: EntryCallback, buffered: bool = True) -> Observation:
        """
        Subscribe to batches of entries of one type.

        Raises:
            CapabilityUnavailableError: If the entry type cannot be observed.
        """
        pass

    @abstractmethod
    def navigation_entry(self) -> Optional[PerformanceEntry]:
        """The page's navigation entry, if one exists yet."""
        pass


class EntryBuffer(WebVitalsSource):
    """
    Web vitals source fed by a host bridge.

    The bridge calls :meth:`push` with entries as the host produces them.
    Entries are also kept per type so ``buffered=True`` subscribers receive
    everything that happened before they subscribed.
    """

    def __init__(self, supported_types: Optional[Iterable[str]] = None, max_buffered: int = 500):
        self.supported_types = set(supported_types) if supported_types is not None else set(ENTRY_TYPES)
        self.max_buffered = max_buffered
        self._buffered: Dict[str, List[PerformanceEntry]] = defaultdict(list)
        self._subscribers: Dict[str, List[tuple]] = defaultdict(list)
        self._lock = threading.RLock()

    @property
    def is_supported(self) -> bool:
        return bool(self.supported_types)

    def observe(self, entry_type: str, callback: EntryCallback, buffered: bool = True) -> Observation:
        if entry_type not in self.supported_types:
            raise CapabilityUnavailableError(f"Entry type {entry_type} is not observable")

        observation = Observation(entry_type, self._remove)
        with self._lock:
            self._subscribers[entry_type].append((observation, callback))
            backlog = list(self._buffered[entry_type]) if buffered else []

        if backlog:
            self._deliver(callback, backlog)
        return observation

    def push(self, entries: Union[PerformanceEntry, Iterable[PerformanceEntry]]) -> None:
        """Deliver entries to subscribers, one batch per entry type."""
        if isinstance(entries, PerformanceEntry):
            entries = [entries]

        batches: Dict[str, List[PerformanceEntry]] = defaultdict(list)
        for entry in entries:
            if entry.entry_type in self.supported_types:
                batches[entry.entry_type].append(entry)

        for entry_type, batch in batches.items():
            with self._lock:
                kept = self._buffered[entry_type]
                kept.extend(batch)
                del kept[: max(0, len(kept) - self.max_buffered)]
                callbacks = [cb for obs, cb in self._subscribers[entry_type] if obs.connected]
            for callback in callbacks:
                self._deliver(callback, batch)

    def navigation_entry(self) -> Optional[PerformanceEntry]:
        with self._lock:
            entries = self._buffered.get(NAVIGATION)
            return entries[0] if entries else None

    def _deliver(self, callback: EntryCallback, batch: List[PerformanceEntry]) -> None:
        try:
            callback(list(batch))
        except Exception as e:
            logger.warning(f"Performance entry callback failed: {e}")

    def _remove(self, observation: Observation) -> None:
        with self._lock:
            subscribers = self._subscribers[observation.entry_type]
            self._subscribers[observation.entry_type] = [
                (obs, cb) for obs, cb in subscribers if obs is not observation
            ]


class NullWebVitalsSource(WebVitalsSource):
    """Host without a performance timeline."""

    @property
    def is_supported(self) -> bool:
        return False

    def observe(self, entry_type: str, callback: EntryCallback, buffered: bool = True) -> Observation:
        raise CapabilityUnavailableError("Performance observation is not supported")

    def navigation_entry(self) -> Optional[PerformanceEntry]:
        return None


class MemorySource(ABC):
    """Heap introspection API."""

    @property
    @abstractmethod
    def is_supported(self) -> bool:
        pass

    @abstractmethod
    def read(self) -> Optional[HeapInfo]:
        """Current heap reading, or None when unavailable."""
        pass


class PsutilMemorySource(MemorySource):
    """
    Memory of a process via psutil.

    ``used`` is the resident set size, ``total`` the virtual memory size and
    ``limit`` the total physical memory of the machine.
    """

    def __init__(self, pid: Optional[int] = None):
        try:
            self.process = psutil.Process(pid)
        except psutil.Error as e:
            logger.warning(f"Cannot attach to process {pid}: {e}")
            self.process = None

    @property
    def is_supported(self) -> bool:
        return self.process is not None

    def read(self) -> Optional[HeapInfo]:
        if self.process is None:
            return None
        try:
            info = self.process.memory_info()
            system = psutil.virtual_memory()
        except psutil.Error as e:
            logger.warning(f"Failed to read process memory: {e}")
            return None
        return HeapInfo(used_bytes=int(info.rss), total_bytes=int(info.vms), limit_bytes=int(system.total))


class TracemallocMemorySource(MemorySource):
    """Python heap allocations traced by :mod:`tracemalloc`."""

    def __init__(self, limit_bytes: Optional[int] = None, start: bool = True):
        self.started_tracing = start and not tracemalloc.is_tracing()
        if self.started_tracing:
            tracemalloc.start()
        self.limit_bytes = limit_bytes or int(psutil.virtual_memory().total)

    @property
    def is_supported(self) -> bool:
        return tracemalloc.is_tracing()

    def read(self) -> Optional[HeapInfo]:
        if not tracemalloc.is_tracing():
            return None
        current, peak = tracemalloc.get_traced_memory()
        return HeapInfo(used_bytes=current, total_bytes=peak, limit_bytes=self.limit_bytes)

    def close(self) -> None:
        """Stop tracing if this source started it."""
        if self.started_tracing and tracemalloc.is_tracing():
            tracemalloc.stop()
        self.started_tracing = False


class NullMemorySource(MemorySource):
    """Host without heap introspection."""

    @property
    def is_supported(self) -> bool:
        return False

    def read(self) -> Optional[HeapInfo]:
        return None


class NavigationSource(ABC):
    """Page context attached to sessions and metrics."""

    @property
    @abstractmethod
    def url(self) -> Optional[str]:
        pass

    @abstractmethod
    def viewport(self) -> Optional[Dict[str, int]]:
        pass

    @abstractmethod
    def connection_info(self) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def user_agent(self) -> Optional[str]:
        pass

    @abstractmethod
    def navigation_timing(self) -> Optional[Dict[str, float]]:
        pass


def default_user_agent() -> str:
    return f"python/{platform.python_version()} ({platform.system()} {platform.machine()})"


class StaticNavigationSource(NavigationSource):
    """Navigation context given up front, with a settable URL."""

    def __init__(
        self,
        url: Optional[str] = None,
        viewport: Optional[Dict[str, int]] = None,
        connection_info: Optional[Dict[str, Any]] = None,
        user_agent: Optional[str] = None,
        timing: Optional[Dict[str, float]] = None,
    ):
        self._url = url
        self._viewport = viewport
        self._connection_info = connection_info
        self._user_agent = user_agent or default_user_agent()
        self._timing = timing

    @property
    def url(self) -> Optional[str]:
        return self._url

    def viewport(self) -> Optional[Dict[str, int]]:
        return dict(self._viewport) if self._viewport else None

    def connection_info(self) -> Optional[Dict[str, Any]]:
        return dict(self._connection_info) if self._connection_info else None

    def user_agent(self) -> Optional[str]:
        return self._user_agent

    def navigation_timing(self) -> Optional[Dict[str, float]]:
        return dict(self._timing) if self._timing else None
