"""MQTT command dispatch for the Automations Service."""
