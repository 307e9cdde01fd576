"""
User interaction and route transition timing.
"""

import functools
import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..models import Metric
from ..monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingInteraction:
    interaction_type: str
    target: str
    start_ms: float


class InteractionTracker:
    """Times user interactions such as clicks and form submissions."""

    def __init__(self, monitor: PerformanceMonitor):
        self.monitor = monitor
        self._pending: Dict[str, PendingInteraction] = {}
        self._ids = itertools.count(1)

    def start_interaction(self, interaction_type: str, target: str) -> str:
        interaction_id = f"{interaction_type}_{target}_{next(self._ids)}"
        self._pending[interaction_id] = PendingInteraction(
            interaction_type=interaction_type,
            target=target,
            start_ms=self.monitor.clock.monotonic_ms(),
        )
        return interaction_id

    def end_interaction(self, interaction_id: str, **metadata: Any) -> Optional[Metric]:
        pending = self._pending.pop(interaction_id, None)
        if pending is None:
            return None
        duration = self.monitor.clock.monotonic_ms() - pending.start_ms
        return self.monitor.record_interaction(pending.interaction_type, pending.target, duration, **metadata)

    def _wrap(self, interaction_type: str, target: str, handler: Callable, metadata: Dict[str, Any]) -> Callable:
        if inspect.iscoroutinefunction(handler):
            @functools.wraps(handler)
            async def async_wrapper(*args, **kwargs):
                interaction_id = self.start_interaction(interaction_type, target)
                try:
                    result = await handler(*args, **kwargs)
                except Exception as e:
                    self.end_interaction(interaction_id, **metadata, success=False, error=str(e))
                    raise
                self.end_interaction(interaction_id, **metadata, success=True)
                return result

            return async_wrapper

        @functools.wraps(handler)
        def wrapper(*args, **kwargs):
            interaction_id = self.start_interaction(interaction_type, target)
            try:
                result = handler(*args, **kwargs)
            except Exception as e:
                self.end_interaction(interaction_id, **metadata, success=False, error=str(e))
                raise
            self.end_interaction(interaction_id, **metadata, success=True)
            return result

        return wrapper

    def track_click(self, target: str, handler: Callable, **metadata: Any) -> Callable:
        """Wrap a click handler (sync or async) so each call is timed."""
        return self._wrap("click", target, handler, metadata)

    def track_form_submit(self, form_name: str, handler: Callable, **metadata: Any) -> Callable:
        return self._wrap("form_submit", form_name, handler, metadata)


class NavigationTracker:
    """Times one route transition at a time."""

    def __init__(self, monitor: PerformanceMonitor):
        self.monitor = monitor
        self._current: Optional[PendingInteraction] = None
        self._from_route: Optional[str] = None

    def start_navigation(self, from_route: str, to_route: str) -> None:
        self._from_route = from_route
        self._current = PendingInteraction(
            interaction_type="navigation",
            target=to_route,
            start_ms=self.monitor.clock.monotonic_ms(),
        )

    def end_navigation(self, **metadata: Any) -> Optional[Metric]:
        current, from_route = self._current, self._from_route
        if current is None:
            return None
        self._current = None
        self._from_route = None
        duration = self.monitor.clock.monotonic_ms() - current.start_ms
        return self.monitor.record_navigation(from_route, current.target, duration, **metadata)
