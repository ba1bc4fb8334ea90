"""
Shared utilities for the device automations backend.

Common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/device correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service skeleton (health, metrics, error handlers)

Do not import from service_* packages into shared/.
"""
