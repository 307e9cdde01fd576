"""
Tests for consent gating and the in-process consent manager.
"""

import json
from unittest.mock import MagicMock

from perfadvisor.consent import (
    ANALYTICS,
    PERFORMANCE,
    ConsentGate,
    ConsentManager,
    StaticConsent,
)
from perfadvisor.models import ConsentLevel, ConsentState
from perfadvisor.scheduler import ManualClock
from perfadvisor.storage import InMemoryStorage


class TestConsentGate:
    """The gate asks the provider every time and never raises."""

    def test_reports_both_flags(self):
        gate = ConsentGate(StaticConsent(performance=True, analytics=False))
        permission = gate.is_collection_allowed()
        assert permission.performance is True
        assert permission.analytics is False
        assert permission.any_allowed
        assert permission.to_consent_level() == ConsentLevel(performance=True, analytics=False)

    def test_nothing_allowed(self):
        permission = ConsentGate(StaticConsent(False, False)).is_collection_allowed()
        assert not permission.any_allowed

    def test_not_cached(self):
        provider = StaticConsent(performance=False, analytics=False)
        gate = ConsentGate(provider)
        assert not gate.is_collection_allowed().any_allowed
        provider.performance = True
        assert gate.is_collection_allowed().performance

    def test_raising_provider_is_denied(self):
        provider = MagicMock()
        provider.is_category_allowed.side_effect = RuntimeError("consent service down")
        permission = ConsentGate(provider).is_collection_allowed()
        assert not permission.performance
        assert not permission.analytics


class TestConsentManager:
    def test_defaults_to_denied(self):
        manager = ConsentManager()
        assert manager.get_state() == ConsentState()
        assert not manager.is_category_allowed(PERFORMANCE)

    def test_grant_and_withdraw(self):
        manager = ConsentManager()
        manager.grant(PERFORMANCE)
        assert manager.is_category_allowed(PERFORMANCE)
        assert not manager.is_category_allowed(ANALYTICS)

        manager.grant()
        assert manager.is_category_allowed(ANALYTICS)

        manager.withdraw(ANALYTICS)
        assert manager.get_state() == ConsentState(performance_allowed=True, analytics_allowed=False)

        manager.withdraw()
        assert manager.get_state() == ConsentState()

    def test_unknown_category_denied(self):
        manager = ConsentManager(state=ConsentState(True, True))
        assert not manager.is_category_allowed("marketing")

    def test_listeners_notified_on_change_only(self):
        manager = ConsentManager()
        changes = []
        unsubscribe = manager.add_listener(changes.append)

        manager.grant(PERFORMANCE)
        manager.grant(PERFORMANCE)
        assert len(changes) == 1

        unsubscribe()
        manager.withdraw()
        assert len(changes) == 1

    def test_raising_listener_does_not_block_update(self):
        manager = ConsentManager()
        manager.add_listener(MagicMock(side_effect=RuntimeError("boom")))
        state = manager.grant()
        assert state.analytics_allowed

    def test_persists_and_restores(self):
        storage = InMemoryStorage()
        clock = ManualClock()
        ConsentManager(storage=storage, clock=clock).grant(PERFORMANCE)

        payload = json.loads(storage.get("perfadvisor_consent"))
        assert payload["performance"] is True
        assert payload["version"] == "1.0"

        restored = ConsentManager(storage=storage, clock=clock)
        assert restored.is_category_allowed(PERFORMANCE)
        assert not restored.is_category_allowed(ANALYTICS)

    def test_version_mismatch_discarded(self):
        storage = InMemoryStorage()
        clock = ManualClock()
        ConsentManager(storage=storage, clock=clock, version="0.9").grant()

        restored = ConsentManager(storage=storage, clock=clock)
        assert restored.get_state() == ConsentState()
        assert storage.get("perfadvisor_consent") is None

    def test_expired_consent_discarded_on_load(self):
        storage = InMemoryStorage()
        clock = ManualClock()
        ConsentManager(storage=storage, clock=clock).grant()

        clock.advance(366 * 86400)
        assert ConsentManager(storage=storage, clock=clock).get_state() == ConsentState()

    def test_consent_expires_while_running(self):
        clock = ManualClock()
        manager = ConsentManager(clock=clock, expiry_days=1)
        manager.grant()
        clock.advance(2 * 86400)
        assert manager.get_state() == ConsentState()

    def test_malformed_stored_consent_ignored(self):
        storage = InMemoryStorage()
        storage.set("perfadvisor_consent", "{not json")
        assert ConsentManager(storage=storage).get_state() == ConsentState()

    def test_storage_failure_does_not_raise(self):
        storage = MagicMock()
        storage.get.return_value = None
        storage.set.side_effect = OSError("disk full")
        manager = ConsentManager(storage=storage)
        assert manager.grant().performance_allowed
