"""Shared fixtures: virtual time, fake platform sources and a wired monitor."""

from typing import Iterable, List, Optional

import pytest

from perfadvisor.consent import ConsentGate, ConsentManager
from perfadvisor.models import ConsentState, HeapInfo
from perfadvisor.monitor import PerformanceMonitor
from perfadvisor.scheduler import ManualScheduler
from perfadvisor.sources import MemorySource, StaticNavigationSource
from perfadvisor.storage import InMemoryStorage
from perfadvisor.store import MetricStore

MB = 1024 * 1024


class FakeMemorySource(MemorySource):
    """Heap readings served from a script; repeats the last one when exhausted."""

    def __init__(self, used: Iterable[int] = (10 * MB,), limit: int = 1000 * MB, supported: bool = True):
        self.readings: List[int] = list(used)
        self.limit = limit
        self.supported = supported
        self.reads = 0
        self.fail = False

    @property
    def is_supported(self) -> bool:
        return self.supported

    def read(self) -> Optional[HeapInfo]:
        if self.fail:
            raise RuntimeError("heap unavailable")
        if not self.supported or not self.readings:
            return None
        index = min(self.reads, len(self.readings) - 1)
        self.reads += 1
        used = self.readings[index]
        return HeapInfo(used_bytes=used, total_bytes=used * 2, limit_bytes=self.limit)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def clock(scheduler):
    return scheduler.clock


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def consent(clock):
    return ConsentManager(state=ConsentState(performance_allowed=True, analytics_allowed=True), clock=clock)


@pytest.fixture
def environment():
    return StaticNavigationSource(
        url="https://example.test/articles",
        viewport={"width": 1280, "height": 720},
        connection_info={"effective_type": "4g"},
        user_agent="pytest",
    )


@pytest.fixture
def store(storage, clock, scheduler, environment):
    return MetricStore(storage=storage, clock=clock, scheduler=scheduler, environment=environment, load=False)


@pytest.fixture
def monitor(store, consent):
    return PerformanceMonitor(store, ConsentGate(consent))


@pytest.fixture
def memory_source():
    return FakeMemorySource()
