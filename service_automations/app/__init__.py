"""
Automations Service package.

Evaluates device data against user-defined automation rules and publishes
the resulting device commands on an MQTT broker. It provides:

- app.main: API surface for rule management, event evaluation and health.
- app.rules: Rule model, condition evaluation, matcher, command builder,
  engine and in-memory rule store.
- app.mqtt: paho-mqtt command publisher.

Guidelines:
- Rule evaluation is pure and deterministic; dispatch happens afterwards.
- Malformed rules are skipped, never fatal.
- Keep evaluation observable (metrics + logs).
"""
