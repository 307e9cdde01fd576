"""
Tests for API, component, interaction and navigation tracking.
"""

import asyncio
from types import SimpleNamespace

import pytest

from perfadvisor.collectors import (
    ApiTracker,
    ComponentTracker,
    InteractionTracker,
    NavigationTracker,
    track_timing,
)
from perfadvisor.models import MetricType


class HttpError(Exception):
    def __init__(self, message, **attrs):
        super().__init__(message)
        for key, value in attrs.items():
            setattr(self, key, value)


class TestApiTracker:
    """Request timing and success semantics."""

    def test_start_and_end(self, monitor, clock):
        tracker = ApiTracker(monitor)
        request_id = tracker.start_request("get", "/api/users")
        assert tracker.pending_count == 1
        clock.advance(0.120)
        metric = tracker.end_request(request_id, 200, response_size=512)

        assert metric.name == "GET /api/users"
        assert metric.value == pytest.approx(120.0)
        assert metric.metadata.success is True
        assert metric.metadata.response_size == 512
        assert tracker.pending_count == 0

    def test_error_status_is_failure(self, monitor):
        tracker = ApiTracker(monitor)
        metric = tracker.end_request(tracker.start_request("POST", "/api/orders"), 422)
        assert metric.metadata.success is False
        assert metric.metadata.status == 422

    def test_error_message_is_failure(self, monitor):
        tracker = ApiTracker(monitor)
        metric = tracker.end_request(tracker.start_request("GET", "/api/x"), 200, error="connection reset")
        assert metric.metadata.success is False
        assert metric.metadata.error == "connection reset"

    def test_unknown_request_id(self, monitor):
        assert ApiTracker(monitor).end_request("req-404", 200) is None

    def test_track_request_reads_response_status(self, monitor, clock):
        tracker = ApiTracker(monitor)

        def call():
            clock.advance(0.050)
            return SimpleNamespace(status_code=201)

        response = tracker.track_request("POST", "/api/items", call)
        assert response.status_code == 201
        metric = monitor.store.get_by_type(MetricType.API)[0]
        assert metric.metadata.status == 201
        assert metric.value == pytest.approx(50.0)

    def test_track_request_plain_result(self, monitor):
        assert ApiTracker(monitor).track_request("GET", "/api/ping", lambda: "pong") == "pong"
        assert monitor.store.get_all()[0].metadata.status == 200

    @pytest.mark.parametrize("error, expected", [
        (HttpError("not found", status=404), 404),
        (HttpError("gateway", status_code=502), 502),
        (HttpError("teapot", response=SimpleNamespace(status_code=418)), 418),
        (ValueError("bad payload"), 500),
    ])
    def test_track_request_error_status(self, monitor, error, expected):
        def call():
            raise error

        with pytest.raises(type(error)):
            ApiTracker(monitor).track_request("GET", "/api/x", call)
        metric = monitor.store.get_all()[0]
        assert metric.metadata.status == expected
        assert metric.metadata.success is False
        assert metric.metadata.error == str(error)

    def test_track_request_async(self, monitor, clock):
        tracker = ApiTracker(monitor)

        async def call():
            clock.advance(0.2)
            return SimpleNamespace(status=204)

        asyncio.run(tracker.track_request_async("DELETE", "/api/items/1", call))
        metric = monitor.store.get_all()[0]
        assert metric.name == "DELETE /api/items/1"
        assert metric.metadata.status == 204
        assert metric.value == pytest.approx(200.0)


class TestComponentTracker:
    def test_render_flags_slow(self, monitor, clock):
        tracker = ComponentTracker(monitor, "ArticleList")
        tracker.render_started()
        clock.advance(0.010)
        fast = tracker.render_finished()
        with tracker.render():
            clock.advance(0.030)

        slow = monitor.store.get_all()[-1]
        assert fast.name == "ArticleList_render"
        assert fast.metadata.slow is False
        assert slow.metadata.slow is True
        assert slow.metadata.render_number == 2
        assert tracker.render_count == 2

    def test_render_exactly_at_threshold_is_not_slow(self, monitor, clock):
        tracker = ComponentTracker(monitor, "Card", slow_threshold_ms=1000)
        with tracker.render():
            clock.advance(1)
        assert monitor.store.get_all()[0].metadata.slow is False

    def test_render_finished_without_start(self, monitor):
        assert ComponentTracker(monitor, "Card").render_finished() is None

    def test_mount_lifetime(self, monitor, clock):
        tracker = ComponentTracker(monitor, "Sidebar")
        tracker.mounted()
        with tracker.render():
            pass
        clock.advance(2)
        metric = tracker.unmounted()
        assert metric.name == "Sidebar_mount_duration"
        assert metric.value == pytest.approx(2000.0)
        assert metric.metadata.render_count == 1
        assert tracker.unmounted() is None

    def test_effects(self, monitor, clock):
        tracker = ComponentTracker(monitor, "Feed")
        with tracker.time_effect("fetch", source="cache"):
            clock.advance(0.005)
        metric = monitor.store.get_all()[0]
        assert metric.name == "Feed_effect_fetch"
        assert metric.metadata.get("source") == "cache"
        assert tracker.end_effect("never_started") is None

    def test_operation_and_custom_metric(self, monitor, clock):
        tracker = ComponentTracker(monitor, "Search")
        with tracker.measure("filter"):
            clock.advance(0.004)
        custom = tracker.record_metric("items_visible", 25)
        names = [m.name for m in monitor.store.get_all()]
        assert names == ["Search_filter", "Search_items_visible"]
        assert custom.metadata.component == "Search"

    def test_track_memory(self, monitor, store, memory_source):
        store.memory_source = memory_source
        tracker = ComponentTracker(monitor, "Chart", track_memory=True)
        with tracker.render():
            pass
        memory = store.get_by_type(MetricType.MEMORY)
        assert len(memory) == 1
        assert memory[0].metadata.component == "Chart"


class TestTrackTiming:
    def test_records_success(self, monitor, clock):
        @track_timing(monitor, metric_name="filter_articles")
        def filter_articles(items):
            clock.advance(0.003)
            return [i for i in items if i]

        assert filter_articles([0, 1, 2]) == [1, 2]
        metric = monitor.store.get_all()[0]
        assert metric.name == "filter_articles"
        assert metric.value == pytest.approx(3.0)
        assert metric.metadata.success is True

    def test_records_failure_and_reraises(self, monitor):
        @track_timing(monitor)
        def explode():
            raise RuntimeError("kaboom")

        with pytest.raises(RuntimeError):
            explode()
        metric = monitor.store.get_all()[0]
        assert metric.name.endswith("explode")
        assert metric.metadata.success is False
        assert metric.metadata.error == "kaboom"


class TestInteractionTracker:
    def test_start_end(self, monitor, clock):
        tracker = InteractionTracker(monitor)
        interaction_id = tracker.start_interaction("click", "button#save")
        clock.advance(0.040)
        metric = tracker.end_interaction(interaction_id)
        assert metric.name == "click:button#save"
        assert metric.value == pytest.approx(40.0)
        assert tracker.end_interaction(interaction_id) is None

    def test_track_click(self, monitor):
        tracker = InteractionTracker(monitor)
        handler = tracker.track_click("button#like", lambda x: x * 2, page="home")
        assert handler(21) == 42
        metric = monitor.store.get_all()[0]
        assert metric.metadata.success is True
        assert metric.metadata.get("page") == "home"

    def test_track_form_submit_failure(self, monitor):
        tracker = InteractionTracker(monitor)

        def submit():
            raise ValueError("invalid email")

        with pytest.raises(ValueError):
            tracker.track_form_submit("signup", submit)()
        metric = monitor.store.get_all()[0]
        assert metric.name == "form_submit:signup"
        assert metric.metadata.success is False
        assert metric.metadata.error == "invalid email"

    def test_async_handler(self, monitor):
        tracker = InteractionTracker(monitor)

        async def on_click():
            return "done"

        wrapped = tracker.track_click("a.more", on_click)
        assert asyncio.run(wrapped()) == "done"
        assert monitor.store.get_all()[0].metadata.success is True


class TestNavigationTracker:
    def test_route_transition(self, monitor, clock):
        tracker = NavigationTracker(monitor)
        tracker.start_navigation("/home", "/articles")
        clock.advance(0.3)
        metric = tracker.end_navigation(navigation_type="push")
        assert metric.name == "/home -> /articles"
        assert metric.metric_type == MetricType.NAVIGATION
        assert metric.value == pytest.approx(300.0)
        assert metric.metadata.navigation_type == "push"

    def test_end_without_start(self, monitor):
        assert NavigationTracker(monitor).end_navigation() is None
