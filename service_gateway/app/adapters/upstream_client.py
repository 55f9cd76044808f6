"""
Upstream client: the only component that dials external data providers.
"""

import time
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING
from urllib.parse import urlparse

import httpx

from shared.logging import get_logger
from ..domain.results import GatewayResult, HttpError, NetworkError, RateLimited, Success
from ..registry import EndpointDescriptor
from ..registry.models import ALLOWED_SCHEMES

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_USER_AGENT = "Astronomer/1.0.0"


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class UpstreamClient:
    """Issues one HTTP request per call and converts the exchange into a GatewayResult.

    URLs and methods come only from endpoint descriptors. Transport and
    decoding exceptions are turned into NetworkError here and never raised.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.logger = get_logger("gateway.upstream")
        self.metrics = metrics
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "application/json",
        }

    def _build_request(self, descriptor: EndpointDescriptor, params: Mapping[str, Any]) -> Dict[str, Any]:
        present = {name: value for name, value in params.items() if value is not None}
        request: Dict[str, Any] = {
            "method": descriptor.http_method,
            "url": descriptor.base_url,
            "headers": self._headers,
        }
        if descriptor.http_method == "GET":
            request["params"] = {name: _query_value(value) for name, value in present.items()}
        else:
            request["json"] = present
        return request

    async def request(self, descriptor: EndpointDescriptor, params: Optional[Mapping[str, Any]] = None) -> GatewayResult:
        """Call the endpoint described by ``descriptor``."""
        if urlparse(descriptor.base_url).scheme not in ALLOWED_SCHEMES:
            return NetworkError(f"Refusing to dial non-http(s) URL for {descriptor.id}")

        started = time.perf_counter()
        try:
            request_kwargs = self._build_request(descriptor, params or {})
            response = await self._client.request(**request_kwargs)
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as exc:
            self.logger.error(
                "Upstream request failed",
                endpoint_id=descriptor.id,
                error=str(exc) or exc.__class__.__name__
            )
            return self._record(descriptor, NetworkError(str(exc) or exc.__class__.__name__), started)

        if response.status_code == 429:
            self.logger.warning("Upstream rate limited the request", endpoint_id=descriptor.id)
            if self.metrics:
                self.metrics.increment_counter("rate_limit_hits_total", endpoint=descriptor.id, source="provider")
            return self._record(descriptor, RateLimited(status_code=429), started)

        if response.status_code != 200:
            self.logger.error(
                "Upstream returned an error status",
                endpoint_id=descriptor.id,
                status_code=response.status_code,
                response=response.text[:500]
            )
            return self._record(descriptor, HttpError(response.status_code, response.reason_phrase), started)

        try:
            data = response.json()
        except ValueError:
            self.logger.error("Upstream returned a non-JSON body", endpoint_id=descriptor.id)
            return self._record(descriptor, NetworkError("Invalid JSON response"), started)

        self.logger.debug("Upstream response received", endpoint_id=descriptor.id)
        return self._record(descriptor, Success(data), started)

    def _record(self, descriptor: EndpointDescriptor, result: GatewayResult, started: float) -> GatewayResult:
        if self.metrics:
            self.metrics.increment_counter(
                "upstream_requests_total",
                endpoint=descriptor.id,
                outcome=type(result).__name__
            )
            self.metrics.observe_histogram(
                "upstream_request_duration_seconds",
                time.perf_counter() - started,
                endpoint=descriptor.id
            )
        return result

    async def close(self):
        await self._client.aclose()
