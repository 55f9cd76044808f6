"""
Fetch orchestration: validation, cache, rate limiting, upstream call, retry.
"""

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional, Set, TYPE_CHECKING

from shared.logging import get_logger, set_endpoint_id
from shared.retry import RetryConfig, calculate_delay
from ..adapters.upstream_client import UpstreamClient
from ..caching import ResponseCache, make_cache_key
from ..ratelimit import SlidingWindowRateLimiter
from ..registry import EndpointDescriptor, EndpointRegistry
from ..validation import RequestValidator
from .results import GatewayResult, NetworkError, RateLimited, Stale, Success, ValidationError

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class FetchOrchestrator:
    """Facade the security boundary calls for every data request.

    ``fetch`` runs a single attempt: validate, serve from cache, admit through
    the rate limiter, call upstream and fill the cache. ``fetch_with_retry``
    adds bounded exponential backoff for rate limiting and falls back to an
    expired cache entry when no fresh data can be obtained.

    Validation, cache lookup and limiter admission contain no ``await``, so on
    the event loop they run without interleaving; the cache and limiter also
    hold their own locks.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        rate_limiter: SlidingWindowRateLimiter,
        cache: ResponseCache,
        upstream: UpstreamClient,
        *,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.registry = registry
        self.validator = RequestValidator(registry)
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.upstream = upstream
        self.retry_config = retry_config or RetryConfig()
        self.sleep = sleep
        self.metrics = metrics
        self.logger = get_logger("gateway.orchestrator")
        self._inflight: Set[asyncio.Task] = set()

    async def fetch(
        self,
        endpoint_id: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        no_cache: bool = False,
    ) -> GatewayResult:
        """Run one attempt for ``endpoint_id`` with ``params``."""
        params = dict(params or {})
        set_endpoint_id(endpoint_id)

        rejection = self.validator.validate(endpoint_id, params)
        if rejection is not None:
            return rejection

        descriptor = self.registry.describe(endpoint_id)
        cache_key = make_cache_key(endpoint_id, params)

        if not no_cache:
            entry = self.cache.get(cache_key)
            if entry is not None:
                self._count("cache_hits_total", endpoint_id)
                self.logger.debug("Cache hit", endpoint_id=endpoint_id, key=cache_key)
                return Success(entry.data, from_cache=True)
            self._count("cache_misses_total", endpoint_id)

        if not self.rate_limiter.admit(endpoint_id):
            return RateLimited(status_code=None, local=True)

        # The upstream call and cache fill run as their own task so a caller
        # that gives up does not cancel them.
        task = asyncio.ensure_future(self._call_and_store(descriptor, params, cache_key))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _call_and_store(
        self,
        descriptor: EndpointDescriptor,
        params: Mapping[str, Any],
        cache_key: str,
    ) -> GatewayResult:
        try:
            result = await self.upstream.request(descriptor, params)
        except Exception as exc:
            # Detached from the caller; every failure ends as a result
            self.logger.error(
                "Unexpected failure during upstream call",
                endpoint_id=descriptor.id,
                error=str(exc) or exc.__class__.__name__,
                exc_info=True
            )
            return NetworkError(f"Unexpected error: {exc.__class__.__name__}")
        if isinstance(result, Success):
            self.cache.set(cache_key, result.data, descriptor.ttl_ms)
        return result

    async def fetch_with_retry(
        self,
        endpoint_id: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        no_cache: bool = False,
    ) -> GatewayResult:
        """Fetch, retrying rate-limited attempts and falling back to stale data."""
        config = self.retry_config
        result = await self.fetch(endpoint_id, params, no_cache=no_cache)

        retry_number = 0
        while isinstance(result, RateLimited) and retry_number < config.max_retries:
            retry_number += 1
            delay = calculate_delay(retry_number, config)
            self.logger.info(
                "Rate limited, waiting before retry",
                endpoint_id=endpoint_id,
                retry=retry_number,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 3),
                local=result.local
            )
            await self.sleep(delay)
            result = await self.fetch(endpoint_id, params, no_cache=no_cache)

        if result.ok or isinstance(result, ValidationError):
            return result

        entry = self.cache.get_stale(make_cache_key(endpoint_id, params or {}))
        if entry is None:
            self.logger.error(
                "Fetch failed with no cached fallback",
                endpoint_id=endpoint_id,
                attempts=retry_number + 1,
                outcome=type(result).__name__
            )
            return result

        self.logger.warning(
            "Serving stale cache entry after failed refresh",
            endpoint_id=endpoint_id,
            age_ms=round(entry.age_ms(self.cache.clock())),
            outcome=type(result).__name__
        )
        self._count("stale_responses_total", endpoint_id)
        return Stale(entry.data, created_at=entry.created_at, cause=result)

    def clear_cache(self) -> int:
        """Empty the response cache; rate-limit history is kept."""
        return self.cache.clear()

    def cache_stats(self):
        return self.cache.stats()

    async def aclose(self):
        """Wait for in-flight upstream calls, then release the HTTP client."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self.upstream.close()

    def _count(self, metric_name: str, endpoint_id: str):
        if self.metrics:
            self.metrics.increment_counter(metric_name, endpoint=endpoint_id)
