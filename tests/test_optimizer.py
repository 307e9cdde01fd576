"""
Tests for the rule-based optimization advisor.
"""

import json

import pytest

from perfadvisor.analytics import (
    AnalyticsSnapshot,
    BundleEstimate,
    ComponentStats,
    EndpointStats,
    MemoryStatus,
    NetworkEstimate,
    VitalStats,
)
from perfadvisor.models import MemoryTier, OptimizationCategory, Rating, Severity, Suggestion, Trend
from perfadvisor.optimizer import OptimizationRule, PerformanceOptimizer, default_rules, vital_above
from perfadvisor.scheduler import ManualClock

MB = 1024 * 1024


def vital(value, rating=Rating.POOR):
    return VitalStats(count=1, latest=value, average=value, median=value, p95=value,
                      trend=Trend.STABLE, classification=rating)


def endpoint(average, error_rate=0.0):
    return EndpointStats(count=10, average=average, median=average, p95=average,
                         error_rate=error_rate, trend=Trend.STABLE, latest=average)


def suggestion(severity, category=OptimizationCategory.API, name="rule"):
    return Suggestion(id=f"{category.value}_{name}", category=category, name=name, severity=severity,
                      message="", recommendations=[], impact="", effort="Low", timestamp=0)


def rule(name, severity=Severity.LOW, matched=True):
    return OptimizationRule(name=name, condition=lambda s: matched, severity=severity, message=name)


@pytest.fixture
def optimizer():
    return PerformanceOptimizer()


class TestDefaultRules:
    """Built-in rules fire on the documented conditions."""

    def test_rule_set(self):
        rules = default_rules()
        assert sum(len(r) for r in rules.values()) == 11
        assert {c.value for c in rules} == {"web_vitals", "api", "components", "memory", "bundle", "network"}

    def test_healthy_snapshot_has_no_suggestions(self, optimizer):
        snapshot = AnalyticsSnapshot(
            web_vitals={"LCP": vital(1200, Rating.GOOD), "FID": vital(40, Rating.GOOD)},
            api={"GET /users": endpoint(150)},
            memory=MemoryStatus(used=20 * MB, total=30 * MB, limit=1000 * MB,
                                usage_percent=2.0, tier=MemoryTier.LOW),
        )
        assert optimizer.analyze(snapshot) == []

    def test_empty_snapshot(self, optimizer):
        assert optimizer.analyze(AnalyticsSnapshot()) == []

    def test_web_vital_rules(self, optimizer):
        snapshot = AnalyticsSnapshot(web_vitals={
            "LCP": vital(4200),
            "FID": vital(100, Rating.GOOD),
            "CLS": vital(0.15, Rating.NEEDS_IMPROVEMENT),
            "TTFB": vital(1900),
        })
        ids = [s.id for s in optimizer.analyze(snapshot)]
        assert ids == ["web_vitals_lcp_optimization", "web_vitals_cls_optimization",
                       "web_vitals_ttfb_optimization"]

    def test_ttfb_in_needs_improvement_band_is_quiet(self, optimizer):
        snapshot = AnalyticsSnapshot(web_vitals={"TTFB": vital(1200, Rating.NEEDS_IMPROVEMENT)})
        assert optimizer.analyze(snapshot) == []

    def test_api_rules(self, optimizer):
        snapshot = AnalyticsSnapshot(api={"GET /search": endpoint(1500, error_rate=12.0)})
        results = optimizer.analyze(snapshot)
        assert [(s.name, s.severity) for s in results] == [
            ("High API Error Rate", Severity.CRITICAL),
            ("Slow API Endpoints", Severity.HIGH),
        ]

    def test_component_rule(self, optimizer):
        slow = ComponentStats(count=3, average=80, median=80, p95=90, slow_count=3,
                              trend=Trend.STABLE, classification=Rating.POOR)
        results = optimizer.analyze(AnalyticsSnapshot(components={"Feed_render": slow}))
        assert [s.id for s in results] == ["components_slow_component_renders"]

    def test_memory_rules(self, optimizer):
        memory = MemoryStatus(used=800 * MB, total=900 * MB, limit=1000 * MB, usage_percent=80.0,
                              tier=MemoryTier.CRITICAL, trend=Trend.DEGRADING, leak_detected=True)
        results = optimizer.analyze(AnalyticsSnapshot(memory=memory))
        assert [s.name for s in results] == ["Memory Leak Detection", "High Memory Usage"]

    def test_bundle_and_network_rules(self, optimizer):
        snapshot = AnalyticsSnapshot(
            bundle=BundleEstimate(estimated_size=6 * MB, script_count=30),
            network=NetworkEstimate(total_requests=150),
        )
        assert {s.category for s in optimizer.analyze(snapshot)} == {
            OptimizationCategory.BUNDLE, OptimizationCategory.NETWORK,
        }

    def test_vital_above_unmeasured(self):
        assert not vital_above("LCP", 2500)(AnalyticsSnapshot())


class TestRuleManagement:
    def test_raising_rule_is_skipped(self):
        def broken(snapshot):
            raise KeyError("missing field")

        optimizer = PerformanceOptimizer(rules={
            OptimizationCategory.API: [
                OptimizationRule("Broken", broken, Severity.CRITICAL, "never"),
                rule("Works", Severity.HIGH),
            ],
        })
        assert [s.name for s in optimizer.analyze(AnalyticsSnapshot())] == ["Works"]

    def test_add_and_remove(self):
        optimizer = PerformanceOptimizer(rules={})
        optimizer.add_rule("caching", rule("Stale Cache"))
        optimizer.add_rule(OptimizationCategory.IMAGES, rule("Huge Images"))
        assert optimizer.rule_count() == 2

        assert optimizer.remove_rule("Stale Cache")
        assert not optimizer.remove_rule("Stale Cache")
        assert [s.name for s in optimizer.analyze(AnalyticsSnapshot())] == ["Huge Images"]

    def test_remove_default_rule(self, optimizer):
        before = optimizer.rule_count()
        assert optimizer.remove_rule("LCP Optimization")
        assert optimizer.rule_count() == before - 1

    def test_suggestion_fields(self):
        optimizer = PerformanceOptimizer(rules={
            OptimizationCategory.CACHING: [OptimizationRule(
                name="Missing  Cache Headers",
                condition=lambda s: True,
                severity=Severity.MEDIUM,
                message="Responses are not cacheable",
                recommendations=["Send Cache-Control"],
                impact="Loading Performance",
                effort="Low",
            )],
        })
        result = optimizer.analyze(AnalyticsSnapshot())[0]
        assert result.id == "caching_missing_cache_headers"
        assert result.recommendations == ["Send Cache-Control"]
        assert result.effort == "Low"

    def test_stable_sort_within_severity(self):
        optimizer = PerformanceOptimizer(rules={
            OptimizationCategory.API: [rule("first", Severity.MEDIUM), rule("low", Severity.LOW)],
            OptimizationCategory.NETWORK: [rule("second", Severity.MEDIUM), rule("top", Severity.CRITICAL)],
        })
        names = [s.name for s in optimizer.analyze(AnalyticsSnapshot())]
        assert names == ["top", "first", "second", "low"]


class TestScoring:
    def test_no_suggestions_is_perfect(self, optimizer):
        assert optimizer.get_optimization_score([]) == 100

    def test_weights(self, optimizer):
        found = [suggestion(Severity.CRITICAL), suggestion(Severity.HIGH),
                 suggestion(Severity.MEDIUM), suggestion(Severity.LOW)]
        assert optimizer.get_optimization_score(found) == 100 - 25 - 15 - 10 - 5

    def test_floor_at_zero(self, optimizer):
        assert optimizer.get_optimization_score([suggestion(Severity.CRITICAL)] * 5) == 0

    def test_custom_weights(self):
        optimizer = PerformanceOptimizer(rules={}, severity_weights={"critical": 50, "high": 1})
        assert optimizer.get_optimization_score([suggestion(Severity.CRITICAL), suggestion(Severity.LOW)]) == 50


class TestGrouping:
    def test_action_plan(self, optimizer):
        found = [suggestion(Severity.CRITICAL), suggestion(Severity.HIGH),
                 suggestion(Severity.MEDIUM), suggestion(Severity.LOW)]
        plan = optimizer.get_prioritized_action_plan(found)
        assert [s.severity for s in plan.immediate] == [Severity.CRITICAL, Severity.HIGH]
        assert [s.severity for s in plan.short_term] == [Severity.MEDIUM]
        assert [s.severity for s in plan.long_term] == [Severity.LOW]

    def test_filters(self, optimizer):
        found = [suggestion(Severity.HIGH, OptimizationCategory.API),
                 suggestion(Severity.LOW, OptimizationCategory.MEMORY)]
        assert optimizer.filter_by_category(found, "memory") == [found[1]]
        assert optimizer.filter_by_severity(found, Severity.HIGH) == [found[0]]

    def test_group_by_category(self, optimizer):
        found = [suggestion(Severity.HIGH, OptimizationCategory.API, "a"),
                 suggestion(Severity.LOW, OptimizationCategory.MEMORY, "b"),
                 suggestion(Severity.LOW, OptimizationCategory.API, "c")]
        grouped = optimizer.group_by_category(found)
        assert [s.name for s in grouped["api"]] == ["a", "c"]
        assert list(grouped) == ["api", "memory"]


class TestReport:
    def test_generate_report(self, optimizer):
        snapshot = AnalyticsSnapshot(
            web_vitals={"LCP": vital(5000)},
            api={"GET /search": endpoint(1500, error_rate=12.0)},
            core_vitals_score=0,
            timestamp=1_700_000_000.0,
        )
        report = optimizer.generate_report(snapshot)

        assert report.timestamp == 1_700_000_000.0
        assert report.total_suggestions == 3
        assert report.count_by_severity(Severity.HIGH) == 2
        assert report.optimization_score == 100 - 25 - 15 - 15
        assert len(report.action_plan.immediate) == 3
        assert set(report.categories) == {"web_vitals", "api"}

    def test_report_is_json_ready(self, optimizer):
        report = optimizer.generate_report(AnalyticsSnapshot(web_vitals={"CLS": vital(0.3)}))
        data = json.loads(json.dumps(report.to_dict()))
        assert data["optimization_score"] == 90
        assert data["action_plan"]["short_term"][0]["category"] == "web_vitals"
        assert data["performance_data"]["web_vitals"]["CLS"]["trend"] == "stable"

    def test_timestamps_follow_injected_clock(self):
        clock = ManualClock(start=1_650_000_000.0)
        optimizer = PerformanceOptimizer(clock=clock)
        snapshot = AnalyticsSnapshot(web_vitals={"LCP": vital(5000)})

        assert optimizer.analyze(snapshot)[0].timestamp == 1_650_000_000.0

        clock.advance(30)
        report = optimizer.generate_report(snapshot)
        assert report.timestamp == 1_650_000_030.0
        assert report.suggestions[0].timestamp == 1_650_000_030.0
