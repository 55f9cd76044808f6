"""
Domain layer for the Gateway Service.

Holds the typed fetch results and the orchestrator that composes the
validator, cache, rate limiter and upstream client. The orchestrator is
imported from ``domain.orchestrator``.
"""

from .results import (
    RATE_LIMITED,
    GatewayResponse,
    GatewayResult,
    HttpError,
    NetworkError,
    RateLimited,
    Stale,
    Success,
    ValidationError,
)

__all__ = [
    "RATE_LIMITED",
    "GatewayResponse",
    "GatewayResult",
    "HttpError",
    "NetworkError",
    "RateLimited",
    "Stale",
    "Success",
    "ValidationError",
]
