"""
Outbound command construction.
"""

import json

from .models import AutomationRule, OutgoingCommand, RuleValue

COMMAND_TOPIC_TEMPLATE = "devices/{hardware_id}/commands"


def command_topic(hardware_id: str) -> str:
    """Broker topic a device listens on for commands."""
    return COMMAND_TOPIC_TEMPLATE.format(hardware_id=hardware_id)


def encode_payload(fields: dict) -> str:
    """Compact JSON keeping native value types."""
    return json.dumps(fields, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def build(rule: AutomationRule) -> OutgoingCommand:
    """Turn a matched rule's action into a command."""
    value = rule.action_value
    if isinstance(value, RuleValue):
        value = value.value

    return OutgoingCommand(
        topic=command_topic(rule.action_device_hardware_id),
        payload=encode_payload({rule.action_variable: value}),
    )
