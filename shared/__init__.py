"""
Shared utilities for the property access layer.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation and credential redaction
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for calling-layer retries
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton (health, metrics, error handlers)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
