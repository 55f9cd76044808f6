"""
Shared utilities for the Astronomer gateway.

This package aggregates the building blocks the gateway service is built on:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff configuration and delay calculation
- base_service: FastAPI application scaffold

Do not import from service_gateway into shared/, except from test_helpers.
"""
