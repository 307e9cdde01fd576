"""
Rule-based optimization advisor.

Rules are declarative ``condition(snapshot) -> bool`` checks grouped by
category. Every rule is evaluated against an :class:`AnalyticsSnapshot`;
matching rules become :class:`Suggestion` values ranked by severity weight.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .analytics import AnalyticsSnapshot, to_plain
from .config import OPTIMIZER, PERFORMANCE_THRESHOLDS
from .error_handling import ErrorLevel, RuleEvaluationError, handle_error
from .models import OptimizationCategory, Severity, Suggestion
from .scheduler import Clock, SystemClock

logger = logging.getLogger(__name__)

Condition = Callable[[AnalyticsSnapshot], bool]


@dataclass
class OptimizationRule:
    """Definition of an optimization rule."""
    name: str
    condition: Condition
    severity: Severity
    message: str
    recommendations: List[str] = field(default_factory=list)
    impact: str = ""
    effort: str = "Medium"

    @property
    def slug(self) -> str:
        return re.sub(r"\s+", "_", self.name.strip()).lower()


@dataclass
class ActionPlan:
    """Suggestions partitioned by urgency."""
    immediate: List[Suggestion] = field(default_factory=list)  # critical + high
    short_term: List[Suggestion] = field(default_factory=list)  # medium
    long_term: List[Suggestion] = field(default_factory=list)  # low

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "immediate": [s.to_dict() for s in self.immediate],
            "short_term": [s.to_dict() for s in self.short_term],
            "long_term": [s.to_dict() for s in self.long_term],
        }


@dataclass
class OptimizationReport:
    timestamp: float
    optimization_score: int
    suggestions: List[Suggestion]
    action_plan: ActionPlan
    categories: Dict[str, List[Suggestion]]
    snapshot: AnalyticsSnapshot

    @property
    def total_suggestions(self) -> int:
        return len(self.suggestions)

    def count_by_severity(self, severity: Severity) -> int:
        return sum(1 for s in self.suggestions if s.severity == severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "optimization_score": self.optimization_score,
            "total_suggestions": self.total_suggestions,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "action_plan": self.action_plan.to_dict(),
            "categories": {
                category: [s.to_dict() for s in items]
                for category, items in self.categories.items()
            },
            "performance_data": to_plain(self.snapshot.to_dict()),
        }


# ---------------------------------------------------------------------------
# Conditions over the snapshot
# ---------------------------------------------------------------------------

def vital_above(name: str, limit: float) -> Condition:
    def condition(snapshot: AnalyticsSnapshot) -> bool:
        value = snapshot.vital(name)
        return value is not None and value > limit
    return condition


def has_slow_api_endpoints(snapshot: AnalyticsSnapshot, limit_ms: Optional[float] = None) -> bool:
    limit_ms = OPTIMIZER["slow_api_average_ms"] if limit_ms is None else limit_ms
    return any(e.average > limit_ms for e in snapshot.api.values())


def has_high_api_error_rate(snapshot: AnalyticsSnapshot, limit_pct: Optional[float] = None) -> bool:
    limit_pct = OPTIMIZER["api_error_rate_pct"] if limit_pct is None else limit_pct
    return any(e.error_rate > limit_pct for e in snapshot.api.values())


def has_slow_components(snapshot: AnalyticsSnapshot, limit_ms: Optional[float] = None) -> bool:
    limit_ms = OPTIMIZER["slow_component_average_ms"] if limit_ms is None else limit_ms
    return any(c.average > limit_ms for c in snapshot.components.values())


def has_high_memory_usage(snapshot: AnalyticsSnapshot, limit_pct: Optional[float] = None) -> bool:
    limit_pct = OPTIMIZER["memory_usage_pct"] if limit_pct is None else limit_pct
    return snapshot.memory is not None and snapshot.memory.usage_percent > limit_pct


def has_memory_leak(snapshot: AnalyticsSnapshot) -> bool:
    return snapshot.memory is not None and snapshot.memory.leak_detected


def has_large_bundle(snapshot: AnalyticsSnapshot, limit_bytes: Optional[int] = None) -> bool:
    limit_bytes = OPTIMIZER["large_bundle_bytes"] if limit_bytes is None else limit_bytes
    return snapshot.bundle.estimated_size > limit_bytes


def has_too_many_requests(snapshot: AnalyticsSnapshot, limit: Optional[int] = None) -> bool:
    limit = OPTIMIZER["max_requests"] if limit is None else limit
    return snapshot.network.total_requests > limit


def default_rules() -> Dict[OptimizationCategory, List[OptimizationRule]]:
    """The built-in rule set, keyed by category."""
    vitals = PERFORMANCE_THRESHOLDS["web_vital"]
    return {
        OptimizationCategory.WEB_VITALS: [
            OptimizationRule(
                name="LCP Optimization",
                condition=vital_above("LCP", vitals["LCP"]["good"]),
                severity=Severity.HIGH,
                message="Largest Contentful Paint is slower than recommended",
                recommendations=[
                    "Optimize and compress images",
                    "Preload critical resources",
                    "Remove unused CSS and JavaScript",
                    "Use a Content Delivery Network (CDN)",
                    "Optimize server response times",
                    "Implement resource hints (preload, prefetch)",
                ],
                impact="User Experience",
                effort="Medium",
            ),
            OptimizationRule(
                name="FID Optimization",
                condition=vital_above("FID", vitals["FID"]["good"]),
                severity=Severity.HIGH,
                message="First Input Delay is higher than recommended",
                recommendations=[
                    "Reduce JavaScript execution time",
                    "Break up long-running tasks",
                    "Use code splitting and lazy loading",
                    "Move heavy computations to web workers",
                    "Defer non-critical JavaScript",
                    "Optimize third-party scripts",
                ],
                impact="Interactivity",
                effort="High",
            ),
            OptimizationRule(
                name="CLS Optimization",
                condition=vital_above("CLS", vitals["CLS"]["good"]),
                severity=Severity.MEDIUM,
                message="Cumulative Layout Shift is higher than recommended",
                recommendations=[
                    "Set explicit width and height for images and videos",
                    "Reserve space for dynamic content",
                    "Avoid inserting content above existing content",
                    "Use CSS aspect-ratio for responsive media",
                    "Preload custom fonts",
                    "Use transform instead of changing layout properties",
                ],
                impact="Visual Stability",
                effort="Medium",
            ),
            OptimizationRule(
                name="TTFB Optimization",
                condition=vital_above("TTFB", vitals["TTFB"]["needs_improvement"]),
                severity=Severity.MEDIUM,
                message="Time to First Byte is poor",
                recommendations=[
                    "Cache rendered pages at the edge",
                    "Reduce server-side processing per request",
                    "Use a Content Delivery Network (CDN)",
                    "Avoid redirect chains",
                ],
                impact="Loading Performance",
                effort="Medium",
            ),
        ],
        OptimizationCategory.API: [
            OptimizationRule(
                name="Slow API Endpoints",
                condition=has_slow_api_endpoints,
                severity=Severity.HIGH,
                message="Some API endpoints are responding slowly",
                recommendations=[
                    "Implement caching strategies",
                    "Add database indexing",
                    "Optimize database queries",
                    "Use pagination for large datasets",
                    "Implement request deduplication",
                    "Consider API response compression",
                ],
                impact="Loading Performance",
                effort="Medium",
            ),
            OptimizationRule(
                name="High API Error Rate",
                condition=has_high_api_error_rate,
                severity=Severity.CRITICAL,
                message="Some API endpoints have high error rates",
                recommendations=[
                    "Implement proper error handling",
                    "Add retry mechanisms with exponential backoff",
                    "Monitor and fix server errors",
                    "Implement circuit breaker patterns",
                    "Add request validation",
                    "Monitor third-party service dependencies",
                ],
                impact="Reliability",
                effort="High",
            ),
        ],
        OptimizationCategory.COMPONENTS: [
            OptimizationRule(
                name="Slow Component Renders",
                condition=has_slow_components,
                severity=Severity.MEDIUM,
                message="Some components are rendering slowly",
                recommendations=[
                    "Memoize pure components",
                    "Cache expensive calculations between renders",
                    "Virtualize large lists",
                    "Split large components into smaller ones",
                    "Avoid unnecessary re-renders",
                    "Remove unnecessary effect dependencies",
                ],
                impact="User Interface Responsiveness",
                effort="Medium",
            ),
        ],
        OptimizationCategory.MEMORY: [
            OptimizationRule(
                name="High Memory Usage",
                condition=has_high_memory_usage,
                severity=Severity.HIGH,
                message="Application is using excessive memory",
                recommendations=[
                    "Check for memory leaks in components",
                    "Clean up subscriptions and timers on unmount",
                    "Optimize image and data caching",
                    "Use object pooling for frequently created objects",
                    "Lazy load heavy components",
                    "Review global state management",
                ],
                impact="Application Stability",
                effort="High",
            ),
            OptimizationRule(
                name="Memory Leak Detection",
                condition=has_memory_leak,
                severity=Severity.CRITICAL,
                message="Potential memory leak detected",
                recommendations=[
                    "Review event listeners for proper cleanup",
                    "Check for circular references",
                    "Ensure timers and intervals are cleared",
                    "Review global variable usage",
                    "Release references when components unmount",
                    "Take heap snapshots to identify leak sources",
                ],
                impact="Application Stability",
                effort="High",
            ),
        ],
        OptimizationCategory.BUNDLE: [
            OptimizationRule(
                name="Large Bundle Size",
                condition=has_large_bundle,
                severity=Severity.MEDIUM,
                message="Application bundle size is large",
                recommendations=[
                    "Implement code splitting",
                    "Use dynamic imports for routes",
                    "Remove unused dependencies",
                    "Optimize third-party libraries",
                    "Use tree shaking",
                    "Run a bundle analysis",
                ],
                impact="Loading Performance",
                effort="Medium",
            ),
        ],
        OptimizationCategory.NETWORK: [
            OptimizationRule(
                name="Too Many Network Requests",
                condition=has_too_many_requests,
                severity=Severity.MEDIUM,
                message="Application is making too many network requests",
                recommendations=[
                    "Batch related requests",
                    "Fetch only the fields a view needs",
                    "Implement proper caching strategies",
                    "Combine multiple API calls",
                    "Cache responses for offline use",
                    "Implement request deduplication",
                ],
                impact="Loading Performance",
                effort="Medium",
            ),
        ],
    }


class PerformanceOptimizer:
    """
    Evaluates optimization rules and ranks the resulting suggestions.
    """

    def __init__(
        self,
        rules: Optional[Mapping[OptimizationCategory, Iterable[OptimizationRule]]] = None,
        severity_weights: Optional[Mapping[Union[Severity, str], int]] = None,
        clock: Optional[Clock] = None,
    ):
        self.clock = clock or SystemClock()
        self.rules: Dict[OptimizationCategory, List[OptimizationRule]] = {}
        for category, category_rules in (default_rules() if rules is None else rules).items():
            for rule in category_rules:
                self.add_rule(category, rule)

        weights = severity_weights or OPTIMIZER["severity_weights"]
        self.severity_weights: Dict[Severity, int] = {
            Severity(key): int(value) for key, value in weights.items()
        }

    def add_rule(self, category: Union[OptimizationCategory, str], rule: OptimizationRule) -> None:
        """Register a rule; rules within a category keep insertion order."""
        self.rules.setdefault(OptimizationCategory(category), []).append(rule)

    def remove_rule(self, name: str) -> bool:
        """Remove every rule called ``name``; True if any was removed."""
        removed = False
        for category in list(self.rules):
            kept = [r for r in self.rules[category] if r.name != name]
            if len(kept) != len(self.rules[category]):
                removed = True
                self.rules[category] = kept
        return removed

    def rule_count(self) -> int:
        return sum(len(rules) for rules in self.rules.values())

    def weight(self, severity: Severity) -> int:
        return self.severity_weights.get(severity, 0)

    def analyze(self, snapshot: AnalyticsSnapshot) -> List[Suggestion]:
        """
        Evaluate every rule against ``snapshot``.

        A condition that raises is logged and skipped; the remaining rules
        still run. Matches are stable-sorted by severity weight, heaviest
        first.
        """
        now = self.clock.now()
        suggestions: List[Suggestion] = []

        for category, rules in self.rules.items():
            for rule in rules:
                try:
                    matched = bool(rule.condition(snapshot))
                except Exception as e:
                    handle_error(
                        e,
                        f"evaluate optimization rule {rule.name}",
                        RuleEvaluationError,
                        level=ErrorLevel.WARNING,
                        context={"category": category.value},
                        logger=logger,
                        reraise=False,
                    )
                    continue
                if not matched:
                    continue
                suggestions.append(Suggestion(
                    id=f"{category.value}_{rule.slug}",
                    category=category,
                    name=rule.name,
                    severity=rule.severity,
                    message=rule.message,
                    recommendations=list(rule.recommendations),
                    impact=rule.impact,
                    effort=rule.effort,
                    timestamp=now,
                ))

        return self.sort_by_severity(suggestions)

    def sort_by_severity(self, suggestions: Iterable[Suggestion]) -> List[Suggestion]:
        return sorted(suggestions, key=lambda s: self.weight(s.severity), reverse=True)

    def get_optimization_score(self, suggestions: Iterable[Suggestion]) -> int:
        """100 minus the summed severity weights, floored at 0."""
        deduction = sum(self.weight(s.severity) for s in suggestions)
        return max(0, 100 - deduction)

    @staticmethod
    def get_prioritized_action_plan(suggestions: Iterable[Suggestion]) -> ActionPlan:
        plan = ActionPlan()
        for suggestion in suggestions:
            if suggestion.severity in (Severity.CRITICAL, Severity.HIGH):
                plan.immediate.append(suggestion)
            elif suggestion.severity == Severity.MEDIUM:
                plan.short_term.append(suggestion)
            else:
                plan.long_term.append(suggestion)
        return plan

    @staticmethod
    def filter_by_category(
        suggestions: Iterable[Suggestion],
        category: Union[OptimizationCategory, str],
    ) -> List[Suggestion]:
        category = OptimizationCategory(category)
        return [s for s in suggestions if s.category == category]

    @staticmethod
    def filter_by_severity(suggestions: Iterable[Suggestion], severity: Union[Severity, str]) -> List[Suggestion]:
        severity = Severity(severity)
        return [s for s in suggestions if s.severity == severity]

    @staticmethod
    def group_by_category(suggestions: Iterable[Suggestion]) -> Dict[str, List[Suggestion]]:
        grouped: Dict[str, List[Suggestion]] = {}
        for suggestion in suggestions:
            grouped.setdefault(suggestion.category.value, []).append(suggestion)
        return grouped

    def generate_report(self, snapshot: AnalyticsSnapshot) -> OptimizationReport:
        suggestions = self.analyze(snapshot)
        report = OptimizationReport(
            timestamp=snapshot.timestamp or self.clock.now(),
            optimization_score=self.get_optimization_score(suggestions),
            suggestions=suggestions,
            action_plan=self.get_prioritized_action_plan(suggestions),
            categories=self.group_by_category(suggestions),
            snapshot=snapshot,
        )
        logger.debug(
            f"Optimization report: score={report.optimization_score}, "
            f"suggestions={report.total_suggestions}"
        )
        return report
