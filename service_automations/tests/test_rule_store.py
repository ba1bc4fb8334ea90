"""
Unit tests for the in-memory RuleStore.
"""

import threading
import pytest
from dataclasses import replace

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import RuleNotFoundError
from service_automations.app.rules.models import AutomationRule
from service_automations.app.rules.store import RuleStore


def make_rule(rule_id: str, trigger_device_id: str = "sensor-1", **overrides) -> AutomationRule:
    fields = dict(
        id=rule_id,
        trigger_device_id=trigger_device_id,
        trigger_variable="temperature",
        trigger_condition="above",
        trigger_value=30,
        action_device_id="act-1",
        action_device_hardware_id="actuator-5",
        action_variable="fan_on",
        action_value=True,
    )
    fields.update(overrides)
    return AutomationRule(**fields)


class TestRuleStore:
    """Test cases for RuleStore."""

    @pytest.fixture
    def store(self):
        """Create RuleStore instance."""
        return RuleStore()

    def test_add_and_get(self, store):
        """Test rules can be added and fetched."""
        rule = make_rule("r1")

        assert store.add_rule(rule) is True
        assert store.get_rule("r1") is rule
        assert store.get_rule("missing") is None

    def test_insertion_order(self, store):
        """Test list order is insertion order."""
        for rule_id in ["c", "a", "b"]:
            store.add_rule(make_rule(rule_id))

        assert [r.id for r in store.list_rules()] == ["c", "a", "b"]

    def test_update_keeps_position(self, store):
        """Test updates do not move a rule in evaluation order."""
        for rule_id in ["a", "b", "c"]:
            store.add_rule(make_rule(rule_id))
        original = store.get_rule("a")

        updated = replace(original, trigger_value=40)
        assert store.update_rule(updated) is True

        assert [r.id for r in store.list_rules()] == ["a", "b", "c"]
        assert store.get_rule("a").trigger_value.value == 40
        assert store.get_rule("a").updated_at >= original.updated_at

    def test_update_missing(self, store):
        """Test updating an unknown rule fails."""
        assert store.update_rule(make_rule("ghost")) is False

    def test_remove(self, store):
        """Test removal."""
        store.add_rule(make_rule("r1"))

        assert store.remove_rule("r1") is True
        assert store.remove_rule("r1") is False
        assert store.list_rules() == []

    def test_require_rule(self, store):
        """Test require_rule raises for unknown ids."""
        with pytest.raises(RuleNotFoundError) as exc_info:
            store.require_rule("ghost")

        assert exc_info.value.status_code == 404
        assert exc_info.value.details == {"rule_id": "ghost"}

    def test_rules_for_device(self, store):
        """Test filtering by trigger device."""
        store.add_rule(make_rule("r1", "sensor-1"))
        store.add_rule(make_rule("r2", "sensor-2"))
        store.add_rule(make_rule("r3", "sensor-1"))

        assert [r.id for r in store.get_rules_for_device("sensor-1")] == ["r1", "r3"]
        assert store.get_rules_for_device("sensor-9") == []

    def test_snapshot_is_independent(self, store):
        """Test listed snapshots are not affected by later mutation."""
        store.add_rule(make_rule("r1"))
        snapshot = store.list_rules()

        store.add_rule(make_rule("r2"))
        store.clear_all_rules()

        assert [r.id for r in snapshot] == ["r1"]
        assert store.list_rules() == []

    def test_stats(self, store):
        """Test store statistics."""
        store.add_rule(make_rule("r1", "sensor-1"))
        store.add_rule(make_rule("r2", "sensor-2", enabled=False, action_device_hardware_id="pump-1"))

        stats = store.get_store_stats()

        assert stats["total_rules"] == 2
        assert stats["enabled_rules"] == 1
        assert stats["trigger_devices"] == ["sensor-1", "sensor-2"]
        assert stats["action_devices"] == ["actuator-5", "pump-1"]

    def test_concurrent_adds(self, store):
        """Test concurrent writers do not lose rules."""
        def add_many(prefix):
            for i in range(100):
                store.add_rule(make_rule(f"{prefix}-{i}"))

        threads = [threading.Thread(target=add_many, args=(p,)) for p in "abcd"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get_store_stats()["total_rules"] == 400
