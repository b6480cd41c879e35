"""
Shared utilities for the Observer Access service.

This package aggregates common building blocks consumed by the service
packages:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace and observer correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators and back-off calculation
- base_service: FastAPI service skeleton (health, metrics, error handlers)

Do not import from service packages into shared/.
"""
