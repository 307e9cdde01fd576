"""
Clocks and periodic task scheduling.

Timer-driven work (snapshot flushes, memory sampling, reports) goes through
a :class:`Scheduler` so production code can use background threads while
tests advance virtual time deterministically.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Source of wall-clock and monotonic time."""

    @abstractmethod
    def now(self) -> float:
        """Wall-clock time in seconds since the epoch."""
        pass

    @abstractmethod
    def monotonic_ms(self) -> float:
        """Monotonic time in milliseconds, for measuring durations."""
        pass


class SystemClock(Clock):
    """Real time."""

    def now(self) -> float:
        return time.time()

    def monotonic_ms(self) -> float:
        return time.perf_counter() * 1000


class ManualClock(Clock):
    """Virtual time that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._monotonic_ms = 0.0
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def monotonic_ms(self) -> float:
        with self._lock:
            return self._monotonic_ms

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        with self._lock:
            self._now += seconds
            self._monotonic_ms += seconds * 1000


class ScheduledTask(ABC):
    """Handle for a periodic task."""

    name: str
    interval: float

    @abstractmethod
    def cancel(self) -> None:
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


def _run_guarded(name: str, callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception as e:
        logger.error(f"Error in scheduled task {name}: {e}")


class Scheduler(ABC):
    """Creates periodic tasks."""

    @abstractmethod
    def every(self, interval: float, callback: Callable[[], None], name: str = "task") -> ScheduledTask:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Cancel every task created by this scheduler."""
        pass


class _ThreadTask(ScheduledTask):
    def __init__(self, name: str, interval: float, callback: Callable[[], None]):
        self.name = name
        self.interval = interval
        self._callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=f"perfadvisor-{name}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _loop(self) -> None:
        # Event.wait doubles as the tick sleep and the cancellation signal
        while not self._stop.wait(self.interval):
            _run_guarded(self.name, self._callback)

    def cancel(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=1.0)

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()


class ThreadScheduler(Scheduler):
    """Runs each periodic task on its own daemon thread."""

    def __init__(self):
        self._tasks: List[_ThreadTask] = []
        self._lock = threading.Lock()

    def every(self, interval: float, callback: Callable[[], None], name: str = "task") -> ScheduledTask:
        if interval <= 0:
            raise ValueError("interval must be positive")
        task = _ThreadTask(name, interval, callback)
        with self._lock:
            self._tasks.append(task)
        task.start()
        logger.debug(f"Started periodic task {name} every {interval}s")
        return task

    def shutdown(self) -> None:
        with self._lock:
            tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()


class _ManualTask(ScheduledTask):
    def __init__(self, name: str, interval: float, callback: Callable[[], None], next_run: float):
        self.name = name
        self.interval = interval
        self.callback = callback
        self.next_run = next_run
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """
    Virtual-time scheduler.

    Tasks fire only from :meth:`advance`, in due-time order, with the shared
    :class:`ManualClock` moved to each firing time first.
    """

    def __init__(self, clock: Optional[ManualClock] = None):
        self.clock = clock or ManualClock()
        self._tasks: List[_ManualTask] = []
        self._elapsed = 0.0

    def every(self, interval: float, callback: Callable[[], None], name: str = "task") -> ScheduledTask:
        if interval <= 0:
            raise ValueError("interval must be positive")
        task = _ManualTask(name, interval, callback, self._elapsed + interval)
        self._tasks.append(task)
        return task

    def advance(self, seconds: float) -> int:
        """Move virtual time forward, firing due tasks. Returns fire count."""
        target = self._elapsed + seconds
        fired = 0
        while True:
            due = [t for t in self._tasks if not t.cancelled and t.next_run <= target]
            if not due:
                break
            task = min(due, key=lambda t: t.next_run)
            self.clock.advance(task.next_run - self._elapsed)
            self._elapsed = task.next_run
            task.next_run += task.interval
            _run_guarded(task.name, task.callback)
            fired += 1

        self.clock.advance(target - self._elapsed)
        self._elapsed = target
        self._tasks = [t for t in self._tasks if not t.cancelled]
        return fired

    @property
    def active_tasks(self) -> List[ScheduledTask]:
        return [t for t in self._tasks if not t.cancelled]

    def shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks = []
