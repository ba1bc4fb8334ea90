"""
Trigger condition evaluation.

All comparisons go through RuleValue kind tags so that mixed-type operands
(a string against a number, a boolean against a string) fail closed instead
of raising or coercing in surprising ways.
"""

import math
from typing import Any, Optional, Union

from .models import RuleValue, TriggerCondition, ValueKind


def as_number(value: RuleValue) -> Optional[Union[int, float]]:
    """Numeric view of an operand, or None when it is not numeric.

    Numbers and numeric strings coerce; booleans never do. Integers stay
    integers so arbitrarily large values compare exactly.
    """
    if value.kind == ValueKind.NUMBER:
        number = value.value
    elif value.kind == ValueKind.STRING:
        try:
            number = int(value.value)
        except ValueError:
            try:
                number = float(value.value)
            except ValueError:
                return None
            if math.isinf(number):
                return None
    else:
        return None

    if isinstance(number, float) and math.isnan(number):
        return None
    return number


def _equals(incoming: RuleValue, expected: RuleValue) -> bool:
    # int/float equality is exact in Python, no float conversion needed
    if incoming.kind != expected.kind:
        return False
    return incoming.value == expected.value


def evaluate(condition: Union[TriggerCondition, str], incoming_value: Any, rule_value: Any) -> bool:
    """Return True when ``incoming_value`` satisfies ``condition`` against ``rule_value``."""
    try:
        condition = TriggerCondition(condition)
    except (ValueError, TypeError):
        return False

    incoming = RuleValue.try_of(incoming_value)
    expected = RuleValue.try_of(rule_value)
    if incoming is None or expected is None:
        return False

    if condition == TriggerCondition.EQUALS:
        return _equals(incoming, expected)

    left = as_number(incoming)
    right = as_number(expected)
    if left is None or right is None:
        return False

    if condition == TriggerCondition.ABOVE:
        return left > right
    return left < right
