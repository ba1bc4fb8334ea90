"""
In-memory rule store.

Holds the current rule set in insertion order, which is also the order in
which rules are evaluated and commands are emitted.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.logging import get_logger
from shared.errors import RuleNotFoundError

from .models import AutomationRule


class RuleStore:
    """Thread-safe, ordered rule storage."""

    def __init__(self):
        self.logger = get_logger("automations.rule_store")
        self._rules: Dict[str, AutomationRule] = {}
        self._lock = threading.Lock()

    def add_rule(self, rule: AutomationRule) -> bool:
        """Add a rule, replacing (in place) any rule with the same id."""
        with self._lock:
            replaced = rule.id in self._rules
            self._rules[rule.id] = rule
        self.logger.info("Rule added", rule_id=rule.id, name=rule.name, replaced=replaced)
        return True

    def update_rule(self, rule: AutomationRule) -> bool:
        """Update a rule in the store, keeping its evaluation position."""
        with self._lock:
            if rule.id not in self._rules:
                return False
            rule.updated_at = datetime.now()
            self._rules[rule.id] = rule
        self.logger.info("Rule updated", rule_id=rule.id, name=rule.name)
        return True

    def remove_rule(self, rule_id: str) -> bool:
        """Remove a rule from the store."""
        with self._lock:
            rule = self._rules.pop(rule_id, None)
        if rule is None:
            return False
        self.logger.info("Rule removed", rule_id=rule_id, name=rule.name)
        return True

    def get_rule(self, rule_id: str) -> Optional[AutomationRule]:
        """Get a rule by ID."""
        with self._lock:
            return self._rules.get(rule_id)

    def require_rule(self, rule_id: str) -> AutomationRule:
        """Get a rule by ID or raise RuleNotFoundError."""
        rule = self.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def list_rules(self) -> List[AutomationRule]:
        """Snapshot of all rules in evaluation order."""
        with self._lock:
            return list(self._rules.values())

    def get_rules_for_device(self, device_id: str) -> List[AutomationRule]:
        """Rules triggered by data from ``device_id``."""
        return [
            rule for rule in self.list_rules()
            if rule.trigger_device_id == device_id
        ]

    def clear_all_rules(self):
        """Clear all rules from the store."""
        with self._lock:
            self._rules.clear()
        self.logger.info("All rules cleared")

    def get_store_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        rules = self.list_rules()
        return {
            "total_rules": len(rules),
            "enabled_rules": len([r for r in rules if r.enabled]),
            "trigger_devices": sorted({r.trigger_device_id for r in rules}),
            "action_devices": sorted({r.action_device_hardware_id for r in rules}),
        }
