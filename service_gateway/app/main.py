"""
API Gateway service for the Astronomer desktop shell.

This is the security boundary between the presentation context and the
network. It exposes a fixed set of operations (fetch, fetch with retry and
cache clear) that take an endpoint id, never a URL, and route every request
through the fetch orchestrator.
"""

from typing import Any, Dict, Optional, Union

import httpx
from fastapi import Body
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr

from shared.base_service import BaseService
from shared.config import GatewaySettings
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from .adapters import UpstreamClient
from .caching import ResponseCache
from .domain import GatewayResponse, GatewayResult
from .domain.orchestrator import FetchOrchestrator
from .ratelimit import SlidingWindowRateLimiter
from .registry import EndpointRegistry


ParamValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, None]


class FetchRequest(BaseModel):
    """Envelope of a fetch call from the presentation context."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    endpoint_id: str = Field(alias="endpointId", min_length=1, max_length=64)
    params: Dict[str, ParamValue] = Field(default_factory=dict)
    no_cache: bool = Field(default=False, alias="noCache")


class ClearCacheResponse(BaseModel):
    success: bool


def build_orchestrator(
    settings: GatewaySettings,
    *,
    metrics: Optional[MetricsCollector] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FetchOrchestrator:
    """Wire registry, limiter, cache and upstream client from settings."""
    if settings.endpoints_file:
        registry = EndpointRegistry.from_file(settings.endpoints_file)
    else:
        registry = EndpointRegistry.load_default()

    return FetchOrchestrator(
        registry,
        SlidingWindowRateLimiter(
            registry,
            window_seconds=settings.rate_window_seconds,
            metrics=metrics,
        ),
        ResponseCache(settings.cache_capacity, metrics=metrics),
        UpstreamClient(
            timeout=settings.request_timeout,
            user_agent=settings.user_agent,
            client=http_client,
            metrics=metrics,
        ),
        retry_config=RetryConfig(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        ),
        metrics=metrics,
    )


class GatewayService(BaseService):
    """Gateway service exposing the fixed fetch operation set."""

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        orchestrator: Optional[FetchOrchestrator] = None,
    ):
        super().__init__(settings)
        self._orchestrator = orchestrator or build_orchestrator(
            self.config,
            metrics=self.metrics,
            http_client=http_client,
        )
        self._setup_gateway_routes()

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""
        orchestrator = self._orchestrator

        @self.app.post("/api/v1/fetch", response_model=GatewayResponse, response_model_by_alias=True)
        async def fetch(request: FetchRequest = Body(...)):
            """Single attempt against a registered endpoint."""
            result = await orchestrator.fetch(
                request.endpoint_id,
                request.params,
                no_cache=request.no_cache,
            )
            return self._respond(request, result)

        @self.app.post("/api/v1/fetch-with-retry", response_model=GatewayResponse, response_model_by_alias=True)
        async def fetch_with_retry(request: FetchRequest = Body(...)):
            """Fetch with backoff on rate limiting and stale fallback on failure."""
            result = await orchestrator.fetch_with_retry(
                request.endpoint_id,
                request.params,
                no_cache=request.no_cache,
            )
            return self._respond(request, result)

        @self.app.post("/api/v1/cache/clear", response_model=ClearCacheResponse)
        async def clear_cache():
            """Drop every cached response."""
            orchestrator.clear_cache()
            return ClearCacheResponse(success=True)

    def _respond(self, request: FetchRequest, result: GatewayResult) -> GatewayResponse:
        if not result.ok:
            self.logger.info(
                "Fetch returned an error result",
                endpoint_id=request.endpoint_id,
                outcome=type(result).__name__
            )
        return result.to_response()

    async def _check_dependencies(self) -> Dict[str, Any]:
        stats = self._orchestrator.cache_stats()
        return {
            "endpoints": len(self._orchestrator.registry),
            "cache_size": stats["size"],
            "cache_capacity": stats["capacity"],
        }

    async def shutdown(self):
        await self._orchestrator.aclose()


def create_app(settings: Optional[GatewaySettings] = None):
    """Create FastAPI application."""
    service = GatewayService(settings)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
