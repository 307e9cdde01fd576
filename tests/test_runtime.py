"""
Tests for the composition root, driven entirely by virtual time.
"""

from unittest.mock import MagicMock

import pytest

from perfadvisor.config import RuntimeOptions
from perfadvisor.consent import PERFORMANCE, ConsentManager, StaticConsent
from perfadvisor.models import MetricType
from perfadvisor.optimizer import OptimizationReport
from perfadvisor.runtime import PerformanceRuntime, default_storage, init_performance_monitoring
from perfadvisor.sources import LARGEST_CONTENTFUL_PAINT, LAYOUT_SHIFT, EntryBuffer, NullMemorySource, PerformanceEntry
from perfadvisor.storage import InMemoryStorage

from conftest import FakeMemorySource

MB = 1024 * 1024


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_runtime(scheduler, storage, environment, events):
    def factory(options=None, **overrides):
        kwargs = dict(
            storage=storage,
            consent=StaticConsent(),
            scheduler=scheduler,
            web_vitals_source=EntryBuffer(),
            memory_source=FakeMemorySource([20 * MB]),
            environment=environment,
            on_performance_data=events.append,
        )
        kwargs.update(overrides)
        return PerformanceRuntime(options or RuntimeOptions(report_interval=60, memory_interval=30), **kwargs)
    return factory


@pytest.fixture
def runtime(make_runtime):
    runtime = make_runtime().start()
    yield runtime
    runtime.stop()


class TestStart:
    """Startup wires collectors and periodic tasks."""

    def test_schedules_tasks(self, runtime, scheduler):
        names = sorted(t.name for t in scheduler.active_tasks)
        assert names == ["flush", "memory_sampler", "report"]
        assert runtime.started

    def test_initial_memory_sample(self, runtime):
        assert runtime.memory_sampler.latest.used == 20 * MB

    def test_start_is_idempotent(self, runtime, scheduler):
        runtime.start()
        assert len(scheduler.active_tasks) == 3

    def test_zero_report_interval_disables_reports(self, make_runtime, scheduler):
        runtime = make_runtime(RuntimeOptions(report_interval=0)).start()
        assert "report" not in {t.name for t in scheduler.active_tasks}
        runtime.stop()

    def test_disabled_collectors(self, make_runtime, scheduler):
        runtime = make_runtime(RuntimeOptions(
            enable_web_vitals=False,
            enable_api_monitoring=False,
            enable_component_tracking=False,
            enable_memory_tracking=False,
            report_interval=0,
        )).start()
        assert runtime.web_vitals is None
        assert runtime.memory_sampler is None
        assert runtime.api is None
        assert runtime.track_component("Feed") is None
        assert [t.name for t in scheduler.active_tasks] == ["flush"]
        runtime.stop()

    def test_unsupported_memory_source(self, make_runtime, scheduler):
        runtime = make_runtime(memory_source=NullMemorySource()).start()
        assert "memory_sampler" not in {t.name for t in scheduler.active_tasks}
        runtime.stop()

    def test_collector_start_failure_is_contained(self, make_runtime):
        source = MagicMock()
        source.is_supported = True
        source.observe.side_effect = RuntimeError("observer crashed")
        source.navigation_entry.side_effect = RuntimeError("no timeline")
        runtime = make_runtime(web_vitals_source=source).start()
        assert runtime.started
        runtime.stop()


class TestCallbacks:
    def test_web_vital_emitted(self, runtime, events):
        runtime.web_vitals_source.push(PerformanceEntry(LARGEST_CONTENTFUL_PAINT, start_time=1500))
        assert events[0]["type"] == "web_vital"
        assert events[0]["data"].name == "LCP"

    def test_report_emitted_on_interval(self, runtime, scheduler, events):
        runtime.web_vitals_source.push(PerformanceEntry(LARGEST_CONTENTFUL_PAINT, start_time=5000))
        scheduler.advance(60)
        reports = [e["data"] for e in events if e["type"] == "performance_report"]
        assert len(reports) == 1
        assert isinstance(reports[0], OptimizationReport)
        assert "LCP Optimization" in [s.name for s in reports[0].suggestions]

    def test_raising_callback_is_contained(self, make_runtime, scheduler):
        runtime = make_runtime(on_performance_data=MagicMock(side_effect=RuntimeError("dashboard down"))).start()
        runtime.web_vitals_source.push(PerformanceEntry(LARGEST_CONTENTFUL_PAINT, start_time=1500))
        scheduler.advance(60)
        assert runtime.web_vitals.get_vital("LCP") is not None
        runtime.stop()

    def test_unsubscribed_after_stop(self, runtime, events):
        runtime.stop()
        runtime.web_vitals.start()
        runtime.web_vitals_source.push(PerformanceEntry(LARGEST_CONTENTFUL_PAINT, start_time=1500))
        assert events == []


class TestReads:
    def test_report_uses_sampler_memory(self, runtime):
        report = runtime.get_report()
        assert report.snapshot.memory.used == 20 * MB
        assert report.optimization_score == 100

    def test_analytics(self, runtime):
        runtime.api.track_request("GET", "/api/users", lambda: None)
        analytics = runtime.get_analytics()
        assert "GET /api/users" in analytics.api
        assert analytics.memory is not None

    def test_track_component(self, runtime):
        tracker = runtime.track_component("Feed", slow_threshold_ms=5)
        with tracker.render():
            pass
        assert runtime.store.get_by_type(MetricType.COMPONENT)[0].name == "Feed_render"

    def test_clear_data(self, runtime):
        runtime.clear_data()
        assert len(runtime.store) == 0


class TestHostEvents:
    def test_page_hidden(self, runtime, storage):
        runtime.web_vitals_source.push(PerformanceEntry(LAYOUT_SHIFT, start_time=0, value=0.2))
        runtime.on_page_hidden()

        names = [m.name for m in runtime.store.get_all()]
        assert "CLS_FINAL" in names
        events = [m.metadata.event for m in runtime.store.get_by_type(MetricType.MEMORY)]
        assert "page_hidden" in events
        assert storage.get(runtime.store.storage_key) is not None

    def test_page_visible(self, runtime):
        runtime.on_page_visible()
        assert runtime.store.get_by_type(MetricType.MEMORY)[-1].metadata.event == "page_visible"


class TestStop:
    def test_stop_cancels_and_flushes(self, make_runtime, scheduler, storage):
        runtime = make_runtime().start()
        runtime.stop()
        assert scheduler.active_tasks == []
        assert not runtime.started
        assert storage.get(runtime.store.storage_key) is not None
        assert runtime.store.get_by_type(MetricType.MEMORY)[-1].metadata.event == "monitor_stop"

    def test_stop_never_raises(self, make_runtime):
        storage = MagicMock()
        storage.get.return_value = None
        storage.set.side_effect = OSError("disk full")
        runtime = make_runtime(storage=storage).start()
        runtime.stop()

    def test_context_manager(self, make_runtime, scheduler):
        with make_runtime() as runtime:
            assert runtime.started
        assert not runtime.started
        assert scheduler.active_tasks == []


class TestConsentDefaults:
    def test_default_consent_denies(self, scheduler, environment):
        storage = InMemoryStorage()
        runtime = PerformanceRuntime(
            RuntimeOptions(report_interval=0),
            storage=storage,
            scheduler=scheduler,
            memory_source=FakeMemorySource(),
            environment=environment,
        ).start()
        assert isinstance(runtime.consent, ConsentManager)
        assert len(runtime.store) == 0

        runtime.consent.grant(PERFORMANCE)
        runtime.on_page_visible()
        metric = runtime.store.get_all()[0]
        assert metric.metadata.is_empty()
        runtime.stop()



class TestDefaultStorage:
    """Unusable durable storage degrades to in-memory collection."""

    def test_unwritable_home_falls_back_to_memory(self, monkeypatch, tmp_path, scheduler, environment):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        monkeypatch.setenv("HOME", str(blocker / "home"))

        runtime = PerformanceRuntime(
            RuntimeOptions(report_interval=0),
            consent=StaticConsent(),
            scheduler=scheduler,
            memory_source=FakeMemorySource([20 * MB]),
            environment=environment,
        ).start()
        assert isinstance(runtime.storage, InMemoryStorage)
        assert runtime.store.get_by_type(MetricType.MEMORY)
        assert runtime.store.flush()
        runtime.stop()

    def test_default_storage_fallback(self, monkeypatch):
        monkeypatch.setattr("perfadvisor.runtime.create_storage", MagicMock(side_effect=OSError("read-only")))
        assert isinstance(default_storage(), InMemoryStorage)

def test_init_performance_monitoring(scheduler, storage):
    runtime = init_performance_monitoring(
        RuntimeOptions(report_interval=0),
        storage=storage,
        consent=StaticConsent(),
        scheduler=scheduler,
        memory_source=FakeMemorySource(),
    )
    assert runtime.started
    runtime.stop()
