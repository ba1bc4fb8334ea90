"""
Rule data models for the Automations Service.
"""

from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.errors import ValidationError


Scalar = Union[bool, int, float, str]


class TriggerCondition(str, Enum):
    """Trigger comparison operators."""
    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"


class ValueKind(str, Enum):
    """Kind tag for rule operands."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class RuleValue:
    """A string, number or boolean operand tagged with its kind."""
    kind: ValueKind
    value: Scalar

    @classmethod
    def try_of(cls, raw: Any) -> Optional["RuleValue"]:
        """Tag a raw value, or return None for unsupported types."""
        if isinstance(raw, RuleValue):
            return raw
        # bool is a subclass of int and must be checked first
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, (int, float)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        return None

    @classmethod
    def of(cls, raw: Any) -> "RuleValue":
        """Tag a raw value, raising ValidationError for unsupported types."""
        value = cls.try_of(raw)
        if value is None:
            raise ValidationError(
                "Rule values must be a string, number or boolean",
                {"value": repr(raw), "type": type(raw).__name__}
            )
        return value


# Python attribute -> wire (dashboard) key
WIRE_FIELDS: Dict[str, str] = {
    "id": "id",
    "trigger_device_id": "triggerDeviceId",
    "trigger_variable": "triggerVariable",
    "trigger_condition": "triggerCondition",
    "trigger_value": "triggerValue",
    "action_device_id": "actionDeviceId",
    "action_device_hardware_id": "actionDeviceHardwareId",
    "action_variable": "actionVariable",
    "action_value": "actionValue",
}

_STRING_FIELDS = (
    "id",
    "trigger_device_id",
    "trigger_variable",
    "action_device_id",
    "action_device_hardware_id",
    "action_variable",
)


def _lookup(data: Dict[str, Any], attr: str) -> Any:
    wire_key = WIRE_FIELDS.get(attr, to_camel(attr))
    if wire_key in data:
        return data[wire_key]
    return data.get(attr)


def _timestamps(data: Dict[str, Any]) -> Dict[str, datetime]:
    """createdAt/updatedAt from a wire document, when present."""
    timestamps = {}
    for attr, wire_key in (("created_at", "createdAt"), ("updated_at", "updatedAt")):
        value = data.get(wire_key, data.get(attr))
        if value is None:
            continue
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                value = None
        if not isinstance(value, datetime):
            raise ValidationError("Rule has invalid fields", {"invalid": [wire_key]})
        timestamps[attr] = value
    return timestamps


@dataclass
class AutomationRule:
    """Event-driven automation: when a trigger holds, set a variable on a device.

    Raw operands are tagged on construction. Construction never raises; a
    rule with missing or invalid fields reports ``is_well_formed() == False``
    and is never matched.
    """
    id: str
    trigger_device_id: str
    trigger_variable: str
    trigger_condition: Union[TriggerCondition, str]
    trigger_value: Any
    action_device_id: str
    action_device_hardware_id: str
    action_variable: str
    action_value: Any
    name: Optional[str] = None
    enabled: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not isinstance(self.trigger_condition, TriggerCondition):
            try:
                self.trigger_condition = TriggerCondition(self.trigger_condition)
            except (ValueError, TypeError):
                pass
        self.trigger_value = RuleValue.try_of(self.trigger_value) or self.trigger_value
        self.action_value = RuleValue.try_of(self.action_value) or self.action_value

    def invalid_fields(self) -> List[str]:
        """Names of fields that keep this rule from being evaluated."""
        invalid = [
            attr for attr in _STRING_FIELDS
            if not isinstance(getattr(self, attr), str) or not getattr(self, attr)
        ]
        if not isinstance(self.trigger_condition, TriggerCondition):
            invalid.append("trigger_condition")
        if not isinstance(self.trigger_value, RuleValue):
            invalid.append("trigger_value")
        if not isinstance(self.action_value, RuleValue):
            invalid.append("action_value")
        if not isinstance(self.enabled, bool):
            invalid.append("enabled")
        return invalid

    def is_well_formed(self) -> bool:
        return not self.invalid_fields()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutomationRule":
        """Build a rule from its wire form (camelCase or snake_case keys)."""
        if not isinstance(data, dict):
            raise ValidationError("Rule must be an object", {"type": type(data).__name__})

        missing = [attr for attr in WIRE_FIELDS if _lookup(data, attr) is None]
        if missing:
            raise ValidationError(
                "Rule is missing required fields",
                {"missing": [WIRE_FIELDS[attr] for attr in missing]}
            )

        rule = cls(
            id=_lookup(data, "id"),
            trigger_device_id=_lookup(data, "trigger_device_id"),
            trigger_variable=_lookup(data, "trigger_variable"),
            trigger_condition=_lookup(data, "trigger_condition"),
            trigger_value=_lookup(data, "trigger_value"),
            action_device_id=_lookup(data, "action_device_id"),
            action_device_hardware_id=_lookup(data, "action_device_hardware_id"),
            action_variable=_lookup(data, "action_variable"),
            action_value=_lookup(data, "action_value"),
            name=data.get("name"),
            enabled=data.get("enabled", True),
            **_timestamps(data),
        )

        invalid = rule.invalid_fields()
        if invalid:
            raise ValidationError(
                "Rule has invalid fields",
                {"invalid": [WIRE_FIELDS.get(attr, attr) for attr in invalid]}
            )
        return rule

    def to_dict(self) -> Dict[str, Any]:
        """Render the wire form."""
        data: Dict[str, Any] = {}
        for attr, wire_key in WIRE_FIELDS.items():
            value = getattr(self, attr)
            if isinstance(value, RuleValue):
                value = value.value
            elif isinstance(value, TriggerCondition):
                value = value.value
            data[wire_key] = value
        data["name"] = self.name
        data["enabled"] = self.enabled
        data["createdAt"] = self.created_at.isoformat()
        data["updatedAt"] = self.updated_at.isoformat()
        return data


@dataclass
class IncomingEvent:
    """One data update from a single device, keyed by variable name."""
    device_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "IncomingEvent":
        device_id = payload.get("deviceId", payload.get("device_id"))
        data = payload.get("data", payload.get("deviceData", {}))
        if not isinstance(device_id, str) or not device_id:
            raise ValidationError("Event is missing deviceId")
        if not isinstance(data, dict):
            raise ValidationError("Event data must be an object", {"type": type(data).__name__})
        return cls(device_id=device_id, data=data)


@dataclass(frozen=True)
class OutgoingCommand:
    """A command ready to be published on the message broker."""
    topic: str
    payload: str

    def to_dict(self) -> Dict[str, str]:
        return {"topic": self.topic, "payload": self.payload}


@dataclass
class EvaluationResult:
    """Result of evaluating one event against a rule set."""
    commands: List[OutgoingCommand] = field(default_factory=list)
    matched_rules: List[str] = field(default_factory=list)
    evaluated_rules: int = 0
    skipped_rules: int = 0
    evaluation_time_ms: float = 0.0


class ApiModel(BaseModel):
    """Base for request/response bodies; accepts camelCase and snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RuleCreateRequest(ApiModel):
    """Request model for creating a rule."""
    id: Optional[str] = Field(None, description="Rule ID; generated when omitted")
    name: Optional[str] = Field(None, description="Display name")
    trigger_device_id: str = Field(..., min_length=1, description="Device whose data activates the rule")
    trigger_variable: str = Field(..., min_length=1, description="Data field to inspect")
    trigger_condition: TriggerCondition = Field(..., description="Comparison operator")
    trigger_value: Scalar = Field(..., description="Comparison operand")
    action_device_id: str = Field(..., min_length=1, description="Device to command")
    action_device_hardware_id: str = Field(..., min_length=1, description="Hardware ID used in the command topic")
    action_variable: str = Field(..., min_length=1, description="Field to set on the action device")
    action_value: Scalar = Field(..., description="Value to set")
    enabled: bool = Field(True, description="Whether the rule is evaluated")


class RuleUpdateRequest(ApiModel):
    """Request model for updating a rule."""
    name: Optional[str] = None
    trigger_device_id: Optional[str] = Field(None, min_length=1)
    trigger_variable: Optional[str] = Field(None, min_length=1)
    trigger_condition: Optional[TriggerCondition] = None
    trigger_value: Optional[Scalar] = None
    action_device_id: Optional[str] = Field(None, min_length=1)
    action_device_hardware_id: Optional[str] = Field(None, min_length=1)
    action_variable: Optional[str] = Field(None, min_length=1)
    action_value: Optional[Scalar] = None
    enabled: Optional[bool] = None


class RuleResponse(ApiModel):
    """Response model for rule operations."""
    id: str
    name: Optional[str]
    trigger_device_id: str
    trigger_variable: str
    trigger_condition: TriggerCondition
    trigger_value: Scalar
    action_device_id: str
    action_device_hardware_id: str
    action_variable: str
    action_value: Scalar
    enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: AutomationRule) -> "RuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            trigger_device_id=rule.trigger_device_id,
            trigger_variable=rule.trigger_variable,
            trigger_condition=rule.trigger_condition,
            trigger_value=rule.trigger_value.value,
            action_device_id=rule.action_device_id,
            action_device_hardware_id=rule.action_device_hardware_id,
            action_variable=rule.action_variable,
            action_value=rule.action_value.value,
            enabled=rule.enabled,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class RuleListResponse(ApiModel):
    """Response model for rule list."""
    rules: List[RuleResponse]
    total: int
    page: int
    limit: int


class AutomationEventRequest(ApiModel):
    """Incoming device data to evaluate."""
    device_id: str = Field(..., min_length=1, description="Device that produced the data")
    data: Dict[str, Any] = Field(default_factory=dict, description="Variable name -> current value")


class CommandResponse(ApiModel):
    topic: str
    payload: str


class EvaluationResponse(ApiModel):
    """Commands produced for one event, with dispatch outcome when published."""
    device_id: str
    commands: List[CommandResponse]
    matched_rules: List[str]
    evaluated_rules: int
    skipped_rules: int
    evaluation_time_ms: float
    dispatched: Optional[int] = None
    failed: Optional[int] = None


class DeviceCommandRequest(ApiModel):
    """Manual command for a single device."""
    command: Dict[str, Any] = Field(..., min_length=1, description="Fields to set on the device")
