"""
Consent gating for metric collection.

The gate asks the consent collaborator on every call; consent may change
mid-session and is never cached here.
"""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from .error_handling import ErrorLevel, PersistenceError, error_context, handle_error
from .models import ConsentLevel, ConsentState
from .scheduler import Clock, SystemClock
from .storage import KeyValueStorage, dump_json

logger = logging.getLogger(__name__)

PERFORMANCE = "performance"
ANALYTICS = "analytics"

CONSENT_VERSION = "1.0"
CONSENT_EXPIRY_DAYS = 365


class ConsentProvider(Protocol):
    """External collaborator that owns the user's consent choice."""

    def is_category_allowed(self, category: str) -> bool:
        ...


@dataclass(frozen=True)
class CollectionPermission:
    """Result of a gate check."""
    performance: bool
    analytics: bool

    @property
    def any_allowed(self) -> bool:
        return self.performance or self.analytics

    def to_consent_level(self) -> ConsentLevel:
        return ConsentLevel(performance=self.performance, analytics=self.analytics)


DENIED = CollectionPermission(performance=False, analytics=False)


class ConsentGate:
    """Consults a :class:`ConsentProvider` before every collection call."""

    def __init__(self, provider: ConsentProvider):
        self.provider = provider

    def _ask(self, category: str) -> bool:
        try:
            return bool(self.provider.is_category_allowed(category))
        except Exception as e:
            logger.warning(f"Consent provider failed for {category}, treating as denied: {e}")
            return False

    def is_collection_allowed(self) -> CollectionPermission:
        return CollectionPermission(
            performance=self._ask(PERFORMANCE),
            analytics=self._ask(ANALYTICS),
        )


class ConsentManager:
    """
    In-process consent collaborator.

    Holds the current :class:`ConsentState` and optionally persists it to
    durable storage together with a version and grant timestamp. A stored
    choice with a different version, or older than ``expiry_days``, is
    discarded on load.
    """

    def __init__(
        self,
        state: Optional[ConsentState] = None,
        storage: Optional[KeyValueStorage] = None,
        clock: Optional[Clock] = None,
        storage_key: str = "perfadvisor_consent",
        version: str = CONSENT_VERSION,
        expiry_days: float = CONSENT_EXPIRY_DAYS,
    ):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.storage_key = storage_key
        self.version = version
        self.expiry_days = expiry_days

        self._lock = threading.RLock()
        self._listeners: List[Callable[[ConsentState], None]] = []
        self._granted_at: Optional[float] = None
        self._state = state or ConsentState()

        if state is None and storage is not None:
            self._load()

    def is_category_allowed(self, category: str) -> bool:
        state = self.get_state()
        if category == PERFORMANCE:
            return state.performance_allowed
        if category == ANALYTICS:
            return state.analytics_allowed
        return False

    def get_state(self) -> ConsentState:
        with self._lock:
            if self._granted_at is not None and self._expired(self._granted_at):
                logger.info("Stored consent expired, resetting to denied")
                self._set(ConsentState(), persist=True)
            return self._state

    def update(self, performance: Optional[bool] = None, analytics: Optional[bool] = None) -> ConsentState:
        """Change one or both flags; unspecified flags keep their value."""
        with self._lock:
            current = self._state
            new_state = ConsentState(
                performance_allowed=current.performance_allowed if performance is None else performance,
                analytics_allowed=current.analytics_allowed if analytics is None else analytics,
            )
            self._set(new_state, persist=True)
            return new_state

    def grant(self, *categories: str) -> ConsentState:
        """Allow the named categories, or both when none are given."""
        categories = categories or (PERFORMANCE, ANALYTICS)
        return self.update(
            performance=True if PERFORMANCE in categories else None,
            analytics=True if ANALYTICS in categories else None,
        )

    def withdraw(self, *categories: str) -> ConsentState:
        """Deny the named categories, or both when none are given."""
        categories = categories or (PERFORMANCE, ANALYTICS)
        return self.update(
            performance=False if PERFORMANCE in categories else None,
            analytics=False if ANALYTICS in categories else None,
        )

    def add_listener(self, callback: Callable[[ConsentState], None]) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _expired(self, granted_at: float) -> bool:
        return self.clock.now() - granted_at > self.expiry_days * 86400

    def _set(self, state: ConsentState, persist: bool) -> None:
        changed = state != self._state
        self._state = state
        self._granted_at = self.clock.now() if state.performance_allowed or state.analytics_allowed else None
        if persist:
            self._save()
        if changed:
            for listener in list(self._listeners):
                try:
                    listener(state)
                except Exception as e:
                    logger.warning(f"Consent listener failed: {e}")

    def _save(self) -> None:
        if self.storage is None:
            return
        payload = {
            "performance": self._state.performance_allowed,
            "analytics": self._state.analytics_allowed,
            "version": self.version,
            "timestamp": self._granted_at,
        }
        with error_context("persist consent", PersistenceError, logger=logger, reraise=False):
            self.storage.set(self.storage_key, dump_json(payload))

    def _load(self) -> None:
        try:
            raw = self.storage.get(self.storage_key)
        except Exception as e:
            handle_error(e, "load consent", PersistenceError, ErrorLevel.WARNING,
                         logger=logger, reraise=False)
            return
        if not raw:
            return

        try:
            data = json.loads(raw)
            version = data.get("version")
            timestamp = data.get("timestamp")
            state = ConsentState(
                performance_allowed=bool(data.get("performance", False)),
                analytics_allowed=bool(data.get("analytics", False)),
            )
        except (ValueError, AttributeError) as e:
            logger.warning(f"Ignoring malformed stored consent: {e}")
            return

        if version != self.version or timestamp is None or self._expired(float(timestamp)):
            logger.info("Discarding outdated stored consent")
            try:
                self.storage.remove(self.storage_key)
            except Exception as e:
                logger.warning(f"Could not remove outdated consent: {e}")
            return

        self._state = state
        self._granted_at = float(timestamp)


class StaticConsent:
    """Fixed consent answers, for hosts with no consent UI."""

    def __init__(self, performance: bool = True, analytics: bool = True):
        self.performance = performance
        self.analytics = analytics

    def is_category_allowed(self, category: str) -> bool:
        if category == PERFORMANCE:
            return self.performance
        if category == ANALYTICS:
            return self.analytics
        return False
