"""
Web Vitals collection.

Tracks Core Web Vitals and other page-load signals from a
:class:`~perfadvisor.sources.WebVitalsSource`:

- LCP (Largest Contentful Paint)
- FID (First Input Delay)
- CLS (Cumulative Layout Shift, session-window algorithm)
- TTFB (Time to First Byte)
- FCP (First Contentful Paint)
- TTI (Time to Interactive, estimated from the navigation entry)

Navigation timing breakdowns and resource timings are recorded as
``navigation`` and ``resource`` metrics.
"""

import functools
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..analytics import CORE_VITALS, core_vitals_score
from ..config import CLS_SESSION_WINDOW
from ..error_handling import CapabilityUnavailableError
from ..models import MetricType, Rating
from ..monitor import PerformanceMonitor
from ..sources import (
    FIRST_INPUT,
    LARGEST_CONTENTFUL_PAINT,
    LAYOUT_SHIFT,
    NAVIGATION,
    PAINT,
    RESOURCE,
    Observation,
    PerformanceEntry,
    WebVitalsSource,
)

logger = logging.getLogger(__name__)

FIRST_CONTENTFUL_PAINT = "first-contentful-paint"

WEB_VITALS_INFO = {
    "LCP": ("Largest Contentful Paint", "Measures loading performance"),
    "FID": ("First Input Delay", "Measures interactivity"),
    "CLS": ("Cumulative Layout Shift", "Measures visual stability"),
    "TTFB": ("Time to First Byte", "Measures server response time"),
    "FCP": ("First Contentful Paint", "Measures perceived loading"),
    "TTI": ("Time to Interactive", "Measures full interactivity"),
}

_IMAGE_RE = re.compile(r"\.(png|jpe?g|gif|svg|webp|avif)(\?|$)", re.IGNORECASE)
_FONT_RE = re.compile(r"\.(woff2?|ttf|otf)(\?|$)", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"\.m?js(\?|$)", re.IGNORECASE)
_STYLE_RE = re.compile(r"\.css(\?|$)", re.IGNORECASE)


def get_resource_type(url: str) -> str:
    """Infer a resource type from its URL."""
    if _SCRIPT_RE.search(url):
        return "javascript"
    if _STYLE_RE.search(url):
        return "stylesheet"
    if _IMAGE_RE.search(url):
        return "image"
    if _FONT_RE.search(url):
        return "font"
    if "/api/" in url:
        return "api"
    return "other"


class ClsSessionWindow:
    """
    Session-window accumulator for layout shifts.

    A shift joins the current session when it starts less than
    ``max_gap_ms`` after the previous shift AND less than ``max_duration_ms``
    after the session's first shift; otherwise it opens a new session. The
    reported CLS is the largest session sum seen so far.
    """

    def __init__(self, max_gap_ms: Optional[float] = None, max_duration_ms: Optional[float] = None):
        self.max_gap_ms = CLS_SESSION_WINDOW["max_gap_ms"] if max_gap_ms is None else max_gap_ms
        self.max_duration_ms = (
            CLS_SESSION_WINDOW["max_duration_ms"] if max_duration_ms is None else max_duration_ms
        )
        self.value = 0.0
        self.session_value = 0.0
        self.session_entries: List[Tuple[float, float]] = []
        self.session_count = 0

    def add(self, start_time: float, shift: float, had_recent_input: bool = False) -> bool:
        """Feed one shift. Returns True when the reported CLS grew."""
        if had_recent_input:
            return False

        if self.session_entries:
            first_start = self.session_entries[0][0]
            last_start = self.session_entries[-1][0]
            joins = (
                start_time - last_start < self.max_gap_ms
                and start_time - first_start < self.max_duration_ms
            )
        else:
            joins = False

        if joins:
            self.session_value += shift
            self.session_entries.append((start_time, shift))
        else:
            self.session_value = shift
            self.session_entries = [(start_time, shift)]
            self.session_count += 1

        if self.session_value > self.value:
            self.value = self.session_value
            return True
        return False

    def reset(self) -> None:
        self.value = 0.0
        self.session_value = 0.0
        self.session_entries = []
        self.session_count = 0


@dataclass(frozen=True)
class VitalReading:
    """Latest value of one vital."""
    name: str
    value: float
    rating: Rating
    timestamp: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        title, description = WEB_VITALS_INFO.get(self.name, (self.name, ""))
        return {
            "value": self.value,
            "rating": self.rating.value,
            "timestamp": self.timestamp,
            "title": title,
            "description": description,
        }


def _guarded(handler: Callable[..., None]) -> Callable[..., None]:
    """Entry handlers log and swallow their own failures."""

    @functools.wraps(handler)
    def wrapper(self, entries):
        try:
            handler(self, entries)
        except Exception as e:
            logger.warning(f"Web vitals handler {handler.__name__} failed: {e}")

    return wrapper


class WebVitalsCollector:
    """Turns performance entries into web vital, navigation and resource metrics."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        source: WebVitalsSource,
        cls_window: Optional[ClsSessionWindow] = None,
    ):
        self.monitor = monitor
        self.source = source
        self.cls_window = cls_window or ClsSessionWindow()
        self.vitals: Dict[str, VitalReading] = {}
        self.observations: Dict[str, Observation] = {}
        self._listeners: List[Callable[[VitalReading], None]] = []
        self._seen_navigations: set = set()
        self.started = False

    @property
    def is_supported(self) -> bool:
        return self.source.is_supported

    def start(self) -> bool:
        """Subscribe to every entry type the source supports."""
        if self.started:
            return True
        if not self.source.is_supported:
            logger.info("Web vitals source unsupported, collector disabled")
            return False

        handlers = {
            LARGEST_CONTENTFUL_PAINT: self._on_lcp,
            FIRST_INPUT: self._on_first_input,
            LAYOUT_SHIFT: self._on_layout_shift,
            PAINT: self._on_paint,
            NAVIGATION: self._on_navigation,
            RESOURCE: self._on_resource,
        }
        for entry_type, handler in handlers.items():
            try:
                self.observations[entry_type] = self.source.observe(entry_type, handler, buffered=True)
            except CapabilityUnavailableError as e:
                logger.debug(f"{entry_type} observer not supported: {e}")
            except Exception as e:
                logger.warning(f"Failed to observe {entry_type}: {e}")

        if NAVIGATION not in self.observations:
            try:
                entry = self.source.navigation_entry()
            except Exception as e:
                logger.warning(f"Navigation entry unavailable: {e}")
                entry = None
            if entry is not None:
                self._on_navigation([entry])

        self.started = True
        return True

    # -- entry handlers ---------------------------------------------------

    @_guarded
    def _on_lcp(self, entries: List[PerformanceEntry]) -> None:
        if not entries:
            return
        last = entries[-1]
        self._record_vital("LCP", last.start_time, {"element": last.element, "url": last.url})

    @_guarded
    def _on_first_input(self, entries: List[PerformanceEntry]) -> None:
        for entry in entries:
            if entry.processing_start is None:
                continue
            self._record_vital("FID", entry.processing_start - entry.start_time, {
                "element": entry.element,
                "event_name": entry.name,
                "start_time": entry.start_time,
                "processing_start": entry.processing_start,
            })

    @_guarded
    def _on_layout_shift(self, entries: List[PerformanceEntry]) -> None:
        for entry in entries:
            if entry.value is None:
                continue
            if self.cls_window.add(entry.start_time, entry.value, entry.had_recent_input):
                self._record_vital("CLS", self.cls_window.value, {
                    "session_entries": len(self.cls_window.session_entries),
                    "largest_shift": max(v for _, v in self.cls_window.session_entries),
                })

    @_guarded
    def _on_paint(self, entries: List[PerformanceEntry]) -> None:
        for entry in entries:
            if entry.name == FIRST_CONTENTFUL_PAINT:
                self._record_vital("FCP", entry.start_time)

    @_guarded
    def _on_navigation(self, entries: List[PerformanceEntry]) -> None:
        for entry in entries:
            key = (entry.name, entry.start_time)
            if key in self._seen_navigations:
                continue
            self._seen_navigations.add(key)

            request_start = entry.timing.get("request_start")
            response_start = entry.timing.get("response_start")
            if request_start is not None and response_start is not None:
                self._record_vital("TTFB", response_start - request_start, {
                    "request_start": request_start,
                    "response_start": response_start,
                    "transfer_size": entry.transfer_size,
                })

            dom_interactive = entry.mark("dom_interactive")
            if dom_interactive > 0:
                self._record_vital("TTI", dom_interactive - entry.start_time, {
                    "estimated_method": "dom_interactive",
                })

            self._record_navigation_timing(entry)

    @_guarded
    def _on_resource(self, entries: List[PerformanceEntry]) -> None:
        for entry in entries:
            response_end = entry.timing.get("response_end")
            duration = response_end - entry.start_time if response_end is not None else entry.duration
            self.monitor.record_resource(
                get_resource_type(entry.name),
                entry.name,
                duration,
                size=entry.transfer_size,
                initiator_type=entry.initiator_type,
            )

    def _record_navigation_timing(self, entry: PerformanceEntry) -> None:
        m = entry.mark
        secure_start = m("secure_connection_start")
        timings = {
            "redirect_time": m("redirect_end") - m("redirect_start"),
            "dns_time": m("domain_lookup_end") - m("domain_lookup_start"),
            "connect_time": m("connect_end") - m("connect_start"),
            "ssl_time": m("connect_end") - secure_start if secure_start > 0 else 0.0,
            "request_time": m("response_start") - m("request_start"),
            "response_time": m("response_end") - m("response_start"),
            "dom_parsing_time": m("dom_content_loaded_event_start") - m("response_end"),
            "dom_content_loaded_time": m("dom_content_loaded_event_end") - m("dom_content_loaded_event_start"),
            "load_event_time": m("load_event_end") - m("load_event_start"),
            "total_time": m("load_event_end") - entry.start_time,
        }
        for name, value in timings.items():
            if value > 0:
                self.monitor.record(MetricType.NAVIGATION, name, value, {
                    "navigation_type": entry.navigation_type,
                    "transfer_size": entry.transfer_size,
                })

    def _record_vital(self, name: str, value: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        metadata = {k: v for k, v in (metadata or {}).items() if v is not None}
        rating = self.monitor.classifier.classify(MetricType.WEB_VITAL, name, value)
        reading = VitalReading(
            name=name,
            value=value,
            rating=rating,
            timestamp=self.monitor.clock.now(),
            metadata=metadata,
        )
        self.vitals[name] = reading
        self.monitor.record(MetricType.WEB_VITAL, name, value, {**metadata, "rating": rating.value})

        for listener in list(self._listeners):
            try:
                listener(reading)
            except Exception as e:
                logger.warning(f"Web vital listener failed: {e}")

    # -- reads ------------------------------------------------------------

    def on_vital(self, callback: Callable[[VitalReading], None]) -> Callable[[], None]:
        """Call ``callback`` for every vital measurement; returns unsubscribe."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def get_vital(self, name: str) -> Optional[VitalReading]:
        return self.vitals.get(name)

    def get_vitals(self) -> List[VitalReading]:
        return list(self.vitals.values())

    def get_summary(self) -> Dict[str, Dict[str, Any]]:
        return {name: reading.to_dict() for name, reading in self.vitals.items()}

    def has_all_core_vitals(self) -> bool:
        return all(name in self.vitals for name in CORE_VITALS)

    def get_core_vitals_score(self) -> int:
        """0-100: good=100, needs improvement=50, poor=0, averaged over measured core vitals."""
        return core_vitals_score({name: r.rating for name, r in self.vitals.items()})

    def record_final_values(self) -> None:
        """Page is being hidden: record the final CLS and a memory reading."""
        cls = self.vitals.get("CLS")
        if cls is not None:
            self.monitor.record(MetricType.WEB_VITAL, "CLS_FINAL", cls.value, {
                **cls.metadata,
                "rating": cls.rating.value,
                "final": True,
            })
        self.monitor.record_memory(event="page_hidden")

    def disconnect(self) -> None:
        for entry_type, observation in list(self.observations.items()):
            try:
                observation.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting {entry_type} observer: {e}")
        self.observations.clear()
        self.started = False
