"""
API Gateway Service package for the Astronomer desktop shell.

The gateway sits between the untrusted presentation context and the public
space-data APIs, enforcing:
- Request shape: via the endpoint registry and request validator
- Call volume: sliding-window rate limiting per endpoint
- Freshness: bounded response cache with per-endpoint TTLs
- Resilience: backoff on provider throttling and stale-on-error fallback

Structure:
- app.main: FastAPI app exposing the fixed operation set.
- app.registry: Endpoint descriptors and their data file.
- app.validation: Request validation.
- app.ratelimit: Sliding-window limiter.
- app.caching: Response cache.
- app.adapters: HTTP client for upstream providers.
- app.domain: Results and the fetch orchestrator.
"""
