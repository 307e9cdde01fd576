"""
API call timing.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from ..models import Metric
from ..monitor import PerformanceMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PendingRequest:
    method: str
    url: str
    start_ms: float


def _status_of(result: Any) -> int:
    """HTTP status of a response-like object, 200 when it has none."""
    for attr in ("status_code", "status"):
        status = getattr(result, attr, None)
        if isinstance(status, int):
            return status
    return 200


def _error_status(error: BaseException) -> int:
    """HTTP status carried by an exception, 500 when it has none."""
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else 500


class ApiTracker:
    """
    Records request/response pairs as ``api`` metrics named ``METHOD url``.

    ``success`` is true only when no error was raised and the status is
    below 400.
    """

    def __init__(self, monitor: PerformanceMonitor):
        self.monitor = monitor
        self._pending: Dict[str, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def start_request(self, method: str, url: str) -> str:
        request_id = f"req-{next(self._ids)}"
        with self._lock:
            self._pending[request_id] = PendingRequest(
                method=method.upper(),
                url=url,
                start_ms=self.monitor.clock.monotonic_ms(),
            )
        return request_id

    def end_request(
        self,
        request_id: str,
        status: int,
        response_size: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Optional[Metric]:
        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            logger.warning(f"Unknown request id {request_id}")
            return None

        duration = self.monitor.clock.monotonic_ms() - pending.start_ms
        metadata = {"success": error is None and status < 400}
        if response_size is not None:
            metadata["response_size"] = response_size
        if error is not None:
            metadata["error"] = error
        return self.monitor.record_api(pending.method, pending.url, duration, status, **metadata)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def track_request(self, method: str, url: str, fn: Callable[[], T]) -> T:
        """Call ``fn`` and record its duration; exceptions are recorded and re-raised."""
        request_id = self.start_request(method, url)
        try:
            result = fn()
        except Exception as e:
            self.end_request(request_id, _error_status(e), error=str(e))
            raise
        self.end_request(request_id, _status_of(result))
        return result

    async def track_request_async(self, method: str, url: str, fn: Callable[[], Awaitable[T]]) -> T:
        request_id = self.start_request(method, url)
        try:
            result = await fn()
        except Exception as e:
            self.end_request(request_id, _error_status(e), error=str(e))
            raise
        self.end_request(request_id, _status_of(result))
        return result
