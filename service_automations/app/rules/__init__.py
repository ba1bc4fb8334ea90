"""
Automation rules package.

Deterministic replacement for prompt-driven automations: an incoming device
event is compared against each rule's trigger and every matching rule
produces one broker command for its action device.

Modules of interest:
- models: Rule, event and command data classes plus API request models.
- conditions: above/below/equals evaluation over tagged operands.
- matcher: Ordered selection of triggered rules.
- commands: Topic and JSON payload construction.
- engine: run() and the AutomationEngine wrapper.
- store: In-memory rule storage used by the service.
"""
