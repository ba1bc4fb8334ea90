"""
Automations service: rule management, event evaluation and command dispatch.
"""

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Optional

from fastapi import HTTPException, Query

from shared.base_service import BaseService
from shared.errors import AutomationException, ValidationError
from shared.logging import set_device_context

from .mqtt.publisher import MqttCommandPublisher
from .rules.commands import command_topic, encode_payload
from .rules.engine import AutomationEngine
from .rules.models import (
    AutomationRule, IncomingEvent, EvaluationResult,
    RuleCreateRequest, RuleUpdateRequest, RuleResponse, RuleListResponse,
    AutomationEventRequest, EvaluationResponse, CommandResponse, DeviceCommandRequest
)
from .rules.store import RuleStore


class AutomationsService(BaseService):
    """Automations service implementation."""

    def __init__(self):
        super().__init__("automations", 8013)

        self.engine = AutomationEngine()
        self.store = RuleStore()
        self.publisher: Optional[MqttCommandPublisher] = None
        if self.config.mqtt_broker_url:
            self.publisher = MqttCommandPublisher(
                self.config.mqtt_broker_url,
                username=self.config.mqtt_username,
                password=self.config.mqtt_password,
                client_id_prefix=self.config.mqtt_client_id_prefix,
                qos=self.config.mqtt_qos,
                keepalive=self.config.mqtt_keepalive,
                publish_timeout=self.config.mqtt_publish_timeout
            )

        self.dispatch_stats = {
            "events_processed": 0,
            "commands_published": 0,
            "commands_failed": 0,
        }

        self._setup_automation_routes()

    def _evaluate(self, event: IncomingEvent, mode: str) -> EvaluationResult:
        with self.metrics.time_operation("automation_evaluation_duration_seconds"):
            result = self.engine.evaluate_event(self.store.list_rules(), event)

        self.metrics.increment_counter("automation_evaluations_total", mode=mode)
        if result.matched_rules:
            self.metrics.increment_counter("automation_rules_matched_total", amount=len(result.matched_rules))
        return result

    @staticmethod
    def _evaluation_response(
        event: IncomingEvent,
        result: EvaluationResult,
        dispatched: Optional[int] = None,
        failed: Optional[int] = None
    ) -> EvaluationResponse:
        return EvaluationResponse(
            device_id=event.device_id,
            commands=[CommandResponse(topic=c.topic, payload=c.payload) for c in result.commands],
            matched_rules=result.matched_rules,
            evaluated_rules=result.evaluated_rules,
            skipped_rules=result.skipped_rules,
            evaluation_time_ms=result.evaluation_time_ms,
            dispatched=dispatched,
            failed=failed
        )

    def _setup_automation_routes(self):
        """Set up automation-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "automations",
                "message": "Device Automations Service",
                "version": "1.0.0",
                "capabilities": ["rule_engine", "rule_store", "mqtt_dispatch"]
            }

        @self.app.get("/automations/rules", response_model=RuleListResponse)
        async def list_rules(
            device_id: Optional[str] = Query(None, description="Filter by trigger device"),
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(50, ge=1, le=100, description="Items per page")
        ):
            """List rules in evaluation order."""
            if device_id:
                rules = self.store.get_rules_for_device(device_id)
            else:
                rules = self.store.list_rules()

            start_idx = (page - 1) * limit
            return RuleListResponse(
                rules=[RuleResponse.from_rule(rule) for rule in rules[start_idx:start_idx + limit]],
                total=len(rules),
                page=page,
                limit=limit
            )

        @self.app.post("/automations/rules", response_model=RuleResponse, status_code=201)
        async def create_rule(request: RuleCreateRequest):
            """Create a new rule."""
            rule_id = request.id or str(uuid.uuid4())
            if self.store.get_rule(rule_id):
                raise HTTPException(status_code=409, detail="Rule already exists")

            rule = AutomationRule(
                id=rule_id,
                name=request.name,
                trigger_device_id=request.trigger_device_id,
                trigger_variable=request.trigger_variable,
                trigger_condition=request.trigger_condition,
                trigger_value=request.trigger_value,
                action_device_id=request.action_device_id,
                action_device_hardware_id=request.action_device_hardware_id,
                action_variable=request.action_variable,
                action_value=request.action_value,
                enabled=request.enabled
            )
            self.store.add_rule(rule)

            self.logger.info("Rule created", rule_id=rule_id, summary=self.engine.describe(rule))
            return RuleResponse.from_rule(rule)

        @self.app.get("/automations/rules/{rule_id}", response_model=RuleResponse)
        async def get_rule(rule_id: str):
            """Get a rule by ID."""
            return RuleResponse.from_rule(self.store.require_rule(rule_id))

        @self.app.put("/automations/rules/{rule_id}", response_model=RuleResponse)
        async def update_rule(rule_id: str, request: RuleUpdateRequest):
            """Update an existing rule."""
            existing_rule = self.store.require_rule(rule_id)

            updates = {
                key: value for key, value in request.model_dump(exclude_unset=True).items()
                if value is not None
            }
            rule = replace(existing_rule, **updates)
            if not self.store.update_rule(rule):
                raise HTTPException(status_code=404, detail="Rule not found")

            self.logger.info("Rule updated", rule_id=rule_id, fields=sorted(updates))
            return RuleResponse.from_rule(rule)

        @self.app.delete("/automations/rules/{rule_id}")
        async def delete_rule(rule_id: str):
            """Delete a rule."""
            self.store.require_rule(rule_id)
            self.store.remove_rule(rule_id)
            return {"success": True, "message": "Rule deleted successfully"}

        @self.app.post("/automations/evaluate", response_model=EvaluationResponse)
        async def evaluate_event(request: AutomationEventRequest):
            """Evaluate device data against stored rules without dispatching."""
            set_device_context(request.device_id)
            event = IncomingEvent(device_id=request.device_id, data=request.data)
            result = self._evaluate(event, mode="dry_run")
            return self._evaluation_response(event, result)

        @self.app.post("/automations/events", response_model=EvaluationResponse)
        async def process_event(request: AutomationEventRequest):
            """Evaluate device data and publish the resulting commands."""
            set_device_context(request.device_id)
            event = IncomingEvent(device_id=request.device_id, data=request.data)
            result = self._evaluate(event, mode="dispatch")

            dispatched = 0
            failed = 0
            if result.commands:
                if self.publisher is None:
                    self.logger.warning(
                        "MQTT broker not configured, commands not dispatched",
                        commands=len(result.commands)
                    )
                    failed = len(result.commands)
                else:
                    try:
                        dispatch = await self.publisher.publish_commands(result.commands)
                        dispatched, failed = dispatch.published, dispatch.failed
                    except AutomationException as e:
                        self.logger.error("Command dispatch failed", code=e.code, error=e.message)
                        failed = len(result.commands)

            self.dispatch_stats["events_processed"] += 1
            self.dispatch_stats["commands_published"] += dispatched
            self.dispatch_stats["commands_failed"] += failed
            if dispatched:
                self.metrics.increment_counter("automation_commands_dispatched_total", amount=dispatched, status="published")
            if failed:
                self.metrics.increment_counter("automation_commands_dispatched_total", amount=failed, status="failed")

            return self._evaluation_response(event, result, dispatched=dispatched, failed=failed)

        @self.app.post("/devices/{hardware_id}/commands")
        async def publish_device_command(hardware_id: str, request: DeviceCommandRequest):
            """Publish a manual command to one device."""
            if self.publisher is None:
                raise HTTPException(status_code=503, detail="MQTT broker is not configured")

            try:
                payload = encode_payload(request.command)
            except ValueError as e:
                raise ValidationError("Command is not JSON encodable", {"error": str(e)})

            topic = command_topic(hardware_id)
            try:
                published = await self.publisher.publish(topic, payload)
            except AutomationException as e:
                self.logger.error("Manual command failed", topic=topic, code=e.code)
                raise HTTPException(status_code=503, detail=e.message)

            if not published:
                raise HTTPException(status_code=503, detail="Failed to publish command")

            self.logger.info("Manual command published", topic=topic, payload=payload)
            return {"success": True, "topic": topic, "payload": payload}

        @self.app.get("/automations/stats")
        async def get_stats():
            """Get automations service statistics."""
            return {
                "store": self.store.get_store_stats(),
                "dispatch": dict(self.dispatch_stats),
                "broker": {
                    "configured": self.publisher is not None,
                    "connected": self.publisher.is_connected() if self.publisher else False
                },
                "timestamp": datetime.now().isoformat()
            }

    async def _check_dependencies(self):
        """Check automations service dependencies."""
        if self.publisher is None:
            return {"mqtt": "not_configured"}
        return {"mqtt": "ok" if self.publisher.is_connected() else "disconnected"}

    async def start(self):
        """Start automations service components."""
        if self.publisher is None:
            self.logger.warning("MQTT broker URL not set, running in evaluate-only mode")
            return

        try:
            await self.publisher.start()
        except AutomationException as e:
            self.logger.error("MQTT publisher unavailable at startup", code=e.code, error=e.message)

    async def stop(self):
        """Stop automations service components."""
        if self.publisher:
            await self.publisher.stop()
        self.logger.info("Automations service stopped")


def create_app():
    """Create automations service application."""
    service = AutomationsService()
    return service.app


if __name__ == "__main__":
    service = AutomationsService()
    service.run()
