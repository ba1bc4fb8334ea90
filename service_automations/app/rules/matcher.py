"""
Rule matching for incoming device events.
"""

from typing import Any, Dict, Iterable, List, Optional, Union

from shared.logging import get_logger
from shared.errors import ValidationError

from .conditions import evaluate
from .models import AutomationRule, IncomingEvent

logger = get_logger("automations.matcher")

RuleLike = Union[AutomationRule, Dict[str, Any]]


def coerce_rule(candidate: RuleLike) -> Optional[AutomationRule]:
    """Return an evaluable rule, or None when the candidate is malformed."""
    if isinstance(candidate, AutomationRule):
        invalid = candidate.invalid_fields()
        if invalid:
            logger.debug("Skipping malformed rule", rule_id=getattr(candidate, "id", None), invalid=invalid)
            return None
        return candidate

    try:
        return AutomationRule.from_dict(candidate)
    except ValidationError as e:
        rule_id = candidate.get("id") if isinstance(candidate, dict) else None
        logger.debug("Skipping malformed rule", rule_id=rule_id, details=e.details)
        return None


def _is_triggered(rule: AutomationRule, event: IncomingEvent) -> bool:
    if not rule.enabled:
        return False
    if rule.trigger_device_id != event.device_id:
        return False
    if rule.trigger_variable not in event.data:
        return False
    return evaluate(rule.trigger_condition, event.data[rule.trigger_variable], rule.trigger_value)


def match(rules: Iterable[RuleLike], event: IncomingEvent) -> List[AutomationRule]:
    """Rules triggered by ``event``, in input order."""
    matched: List[AutomationRule] = []
    for candidate in rules:
        rule = coerce_rule(candidate)
        if rule is not None and _is_triggered(rule, event):
            matched.append(rule)
    return matched
