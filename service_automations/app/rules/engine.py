"""
Automation engine for the Automations Service.

Evaluates one incoming device event against a rule set and returns the
commands to publish. Evaluation is pure: the engine reads nothing but its
arguments, writes nothing, and performs no I/O, so it can be called from
concurrent request handlers without coordination.
"""

import time
from typing import Iterable, List, Optional

from shared.logging import get_logger

from .commands import build
from .matcher import RuleLike, coerce_rule, match
from .models import AutomationRule, EvaluationResult, IncomingEvent, OutgoingCommand

logger = get_logger("automations.engine")


def _build_all(rules: List[AutomationRule]) -> List[OutgoingCommand]:
    commands = []
    for rule in rules:
        try:
            commands.append(build(rule))
        except (TypeError, ValueError) as e:
            # e.g. a NaN action value has no JSON encoding
            logger.warning("Skipping rule with unencodable action", rule_id=rule.id, error=str(e))
    return commands


def run(rules: Iterable[RuleLike], event: IncomingEvent) -> List[OutgoingCommand]:
    """Commands for every rule triggered by ``event``, in rule order."""
    rules = list(rules)
    if not rules:
        return []
    return _build_all(match(rules, event))


class AutomationEngine:
    """Stateless wrapper around ``run`` that adds timing and logging."""

    def __init__(self):
        self.logger = logger

    def run(self, rules: Iterable[RuleLike], event: IncomingEvent) -> List[OutgoingCommand]:
        return run(rules, event)

    def evaluate_event(self, rules: Iterable[RuleLike], event: IncomingEvent) -> EvaluationResult:
        """Evaluate ``event`` and report what matched alongside the commands."""
        start_time = time.time()
        rules = list(rules)

        if not rules:
            return EvaluationResult(evaluation_time_ms=(time.time() - start_time) * 1000)

        coerced = [coerce_rule(candidate) for candidate in rules]
        evaluable = [rule for rule in coerced if rule is not None]
        matched = match(evaluable, event)
        commands = _build_all(matched)

        result = EvaluationResult(
            commands=commands,
            matched_rules=[rule.id for rule in matched],
            evaluated_rules=len(rules),
            skipped_rules=len(rules) - len(evaluable),
            evaluation_time_ms=(time.time() - start_time) * 1000
        )

        self.logger.debug(
            "Automation evaluation result",
            device_id=event.device_id,
            matched_rules=result.matched_rules,
            skipped_rules=result.skipped_rules,
            commands=len(result.commands)
        )

        return result

    def describe(self, rule: AutomationRule) -> Optional[str]:
        """Human readable summary of a rule, or None for malformed rules."""
        if not rule.is_well_formed():
            return None
        return (
            f"IF {rule.trigger_variable} on {rule.trigger_device_id} is "
            f"{rule.trigger_condition.value} {rule.trigger_value.value!r}, THEN set "
            f"'{rule.action_variable}' on '{rule.action_device_hardware_id}' to "
            f"{rule.action_value.value!r}"
        )
