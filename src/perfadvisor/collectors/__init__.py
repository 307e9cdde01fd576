"""
Collectors: narrow adapters that turn platform signals into metrics.
"""

from .api import ApiTracker
from .components import ComponentTracker, track_timing
from .interactions import InteractionTracker, NavigationTracker
from .memory import HealthStatus, MemorySampler
from .web_vitals import ClsSessionWindow, VitalReading, WebVitalsCollector, get_resource_type

__all__ = [
    "ApiTracker",
    "ClsSessionWindow",
    "ComponentTracker",
    "HealthStatus",
    "InteractionTracker",
    "MemorySampler",
    "NavigationTracker",
    "VitalReading",
    "WebVitalsCollector",
    "get_resource_type",
    "track_timing",
]
