"""
Unit tests for the Gateway fetch orchestrator.
"""

import asyncio

import httpx
import pytest

from service_gateway.app.adapters import UpstreamClient
from service_gateway.app.caching import ResponseCache, make_cache_key
from service_gateway.app.domain import (
    HttpError,
    NetworkError,
    RateLimited,
    Stale,
    Success,
    ValidationError,
)
from service_gateway.app.domain.orchestrator import FetchOrchestrator
from service_gateway.app.ratelimit import SlidingWindowRateLimiter
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from shared.test_helpers import (
    FakeClock,
    RecordingSleep,
    UpstreamStub,
    build_registry,
    build_test_orchestrator,
    json_response,
)


HOUR_MS = 60 * 60 * 1000
APOD_PARAMS = {"api_key": "DEMO_KEY", "date": "2024-01-01"}
APOD_PAYLOAD = {
    "date": "2024-01-01",
    "title": "NGC 1232: A Grand Design Spiral Galaxy",
    "media_type": "image",
}


class TestFetch:
    """Test cases for a single fetch attempt."""

    @pytest.fixture
    def wall_clock(self):
        return FakeClock(start=1_700_000_000_000.0)

    @pytest.fixture
    def limiter_clock(self):
        return FakeClock()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("gateway")

    @pytest.mark.asyncio
    async def test_apod_fetched_once_then_served_from_cache(self, wall_clock, metrics):
        """Test two identical apod fetches make one network call."""
        stub = UpstreamStub(json_response(APOD_PAYLOAD))
        orchestrator = build_test_orchestrator(stub, wall_clock=wall_clock, metrics=metrics)

        first = await orchestrator.fetch("apod", APOD_PARAMS)
        second = await orchestrator.fetch("apod", dict(reversed(list(APOD_PARAMS.items()))))

        assert stub.calls == 1
        assert first == Success(APOD_PAYLOAD)
        assert second == Success(APOD_PAYLOAD, from_cache=True)
        assert second.data == first.data
        assert metrics.sample("cache_hits_total", endpoint="apod") == 1.0
        assert metrics.sample("cache_misses_total", endpoint="apod") == 1.0

    @pytest.mark.asyncio
    async def test_cache_hit_skips_rate_limiter(self, limiter_clock):
        """Test cached responses do not consume rate-limit budget."""
        stub = UpstreamStub(json_response({"latitude": 12.5}))
        orchestrator = build_test_orchestrator(stub, limiter_clock=limiter_clock)

        for _ in range(10):
            result = await orchestrator.fetch("iss-position")
            assert result.ok

        assert stub.calls == 1
        assert orchestrator.rate_limiter.status("iss-position")["current_count"] == 1

    @pytest.mark.asyncio
    async def test_validation_failure_touches_nothing(self):
        """Test malformed requests leave cache, limiter and network untouched."""
        stub = UpstreamStub(json_response(APOD_PAYLOAD))
        orchestrator = build_test_orchestrator(stub)

        result = await orchestrator.fetch("apod", {"date": "2024-01-01"})

        assert result == ValidationError("Missing required parameter: api_key")
        assert stub.calls == 0
        assert len(orchestrator.cache) == 0
        assert orchestrator.cache_stats()["misses"] == 0
        assert orchestrator.rate_limiter.status("apod")["current_count"] == 0

    @pytest.mark.asyncio
    async def test_unknown_endpoint(self):
        """Test unknown endpoints are a validation error, not an exception."""
        stub = UpstreamStub()
        orchestrator = build_test_orchestrator(stub)

        result = await orchestrator.fetch("http://evil.example/steal", {})

        assert isinstance(result, ValidationError)
        assert stub.calls == 0

    @pytest.mark.asyncio
    async def test_local_rate_limit_without_network(self):
        """Test the (rate_limit + 1)-th call is rejected locally."""
        stub = UpstreamStub(httpx.ConnectError("offline"))
        orchestrator = build_test_orchestrator(stub)

        results = [await orchestrator.fetch("iss-position") for _ in range(4)]

        assert [type(result) for result in results] == [NetworkError] * 3 + [RateLimited]
        assert results[-1] == RateLimited(status_code=None, local=True)
        assert results[-1].to_response().error == "RATE_LIMITED"
        assert stub.calls == 3

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, wall_clock):
        """Test an entry past its TTL triggers a new network call."""
        stub = UpstreamStub(json_response({"n": 1}), json_response({"n": 2}))
        orchestrator = build_test_orchestrator(stub, wall_clock=wall_clock)

        await orchestrator.fetch("iss-position")
        wall_clock.advance(10000)
        fresh = await orchestrator.fetch("iss-position")
        wall_clock.advance(1)
        refreshed = await orchestrator.fetch("iss-position")

        assert fresh == Success({"n": 1}, from_cache=True)
        assert refreshed == Success({"n": 2})
        assert stub.calls == 2

    @pytest.mark.asyncio
    async def test_no_cache_bypasses_and_refreshes(self):
        """Test no_cache forces a network call and refills the cache."""
        stub = UpstreamStub(json_response({"n": 1}), json_response({"n": 2}))
        orchestrator = build_test_orchestrator(stub)

        await orchestrator.fetch("iss-position")
        forced = await orchestrator.fetch("iss-position", no_cache=True)
        cached = await orchestrator.fetch("iss-position")

        assert forced == Success({"n": 2})
        assert cached == Success({"n": 2}, from_cache=True)
        assert stub.calls == 2

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self):
        """Test failed responses never fill the cache."""
        stub = UpstreamStub(httpx.Response(500), httpx.Response(429), httpx.Response(200, text="nope"))
        orchestrator = build_test_orchestrator(stub)

        results = [await orchestrator.fetch("iss-position") for _ in range(3)]

        assert isinstance(results[0], HttpError)
        assert isinstance(results[1], RateLimited)
        assert isinstance(results[2], NetworkError)
        assert len(orchestrator.cache) == 0

    @pytest.mark.asyncio
    async def test_clear_cache_keeps_rate_history(self):
        """Test clearing the cache does not reset the rate limiter."""
        stub = UpstreamStub(json_response({"latitude": 1.0}))
        orchestrator = build_test_orchestrator(stub)
        await orchestrator.fetch("iss-position")

        removed = orchestrator.clear_cache()

        assert removed == 1
        assert len(orchestrator.cache) == 0
        assert orchestrator.rate_limiter.status("iss-position")["current_count"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_are_not_coalesced(self):
        """Test two simultaneous misses for one key both reach the network."""
        stub = UpstreamStub(json_response({"n": 1}), json_response({"n": 2}))
        orchestrator = build_test_orchestrator(stub)

        first, second = await asyncio.gather(
            orchestrator.fetch("iss-position"),
            orchestrator.fetch("iss-position"),
        )

        assert stub.calls == 2
        assert first.ok and second.ok
        assert len(orchestrator.cache) == 1

    @pytest.mark.asyncio
    async def test_abandoned_fetch_still_fills_cache(self):
        """Test a cancelled caller does not cancel the upstream call."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(request):
            started.set()
            await release.wait()
            return json_response({"latitude": 51.5})

        registry = build_registry()
        orchestrator = FetchOrchestrator(
            registry,
            SlidingWindowRateLimiter(registry, clock=FakeClock()),
            ResponseCache(10, clock=FakeClock()),
            UpstreamClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler))),
        )

        caller = asyncio.ensure_future(orchestrator.fetch("iss-position"))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        await orchestrator.aclose()

        entry = orchestrator.cache.get(make_cache_key("iss-position", {}))
        assert entry is not None
        assert entry.data == {"latitude": 51.5}

    @pytest.mark.asyncio
    async def test_unencodable_param_rejected_before_limiter(self, limiter_clock):
        """Test text that cannot be sent is refused without using quota."""
        stub = UpstreamStub()
        orchestrator = build_test_orchestrator(stub, limiter_clock=limiter_clock)

        result = await orchestrator.fetch("apod", {"api_key": "\ud800"})

        assert result == ValidationError("Parameter api_key has invalid format")
        assert orchestrator.rate_limiter.status("apod")["current_count"] == 0
        assert stub.calls == 0

    @pytest.mark.asyncio
    async def test_unexpected_upstream_failure_becomes_network_error(self):
        """Test a non-transport exception during the call still ends as a result."""
        stub = UpstreamStub(RuntimeError("decoder exploded"))
        orchestrator = build_test_orchestrator(stub)

        result = await orchestrator.fetch("iss-position")

        assert result == NetworkError("Unexpected error: RuntimeError")
        assert len(orchestrator.cache) == 0
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_unexpected_failure_after_caller_cancelled(self):
        """Test a detached call that fails after its caller left is still collected."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(request):
            started.set()
            await release.wait()
            raise RuntimeError("decoder exploded")

        registry = build_registry()
        orchestrator = FetchOrchestrator(
            registry,
            SlidingWindowRateLimiter(registry, clock=FakeClock()),
            ResponseCache(10, clock=FakeClock()),
            UpstreamClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler))),
        )

        caller = asyncio.ensure_future(orchestrator.fetch("iss-position"))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        await orchestrator.aclose()

        assert len(orchestrator.cache) == 0
        assert not orchestrator._inflight


class TestFetchWithRetry:
    """Test cases for the retrying, stale-tolerant fetch."""

    @pytest.fixture
    def wall_clock(self):
        return FakeClock(start=1_700_000_000_000.0)

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    @pytest.mark.asyncio
    async def test_backoff_then_success(self, sleep):
        """Test three 429s then a 200 take four attempts with 5/10/20 s waits."""
        stub = UpstreamStub(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(429),
            json_response(APOD_PAYLOAD),
        )
        orchestrator = build_test_orchestrator(stub, sleep=sleep)

        result = await orchestrator.fetch_with_retry("apod", APOD_PARAMS)

        assert result == Success(APOD_PAYLOAD)
        assert stub.calls == 4
        assert sleep.delays == [5.0, 10.0, 20.0]

    @pytest.mark.asyncio
    async def test_backoff_with_jitter(self, sleep):
        """Test jittered waits stay within 10% of the nominal delays."""
        stub = UpstreamStub(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(429),
            json_response(APOD_PAYLOAD),
        )
        orchestrator = build_test_orchestrator(stub, sleep=sleep, retry_config=RetryConfig(jitter=True))

        result = await orchestrator.fetch_with_retry("apod", APOD_PARAMS)

        assert result.ok
        assert sleep.delays == [
            pytest.approx(5.0, rel=0.1),
            pytest.approx(10.0, rel=0.1),
            pytest.approx(20.0, rel=0.1),
        ]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, sleep):
        """Test waits never exceed the maximum delay."""
        stub = UpstreamStub(httpx.Response(429))
        orchestrator = build_test_orchestrator(
            stub,
            sleep=sleep,
            retry_config=RetryConfig(max_retries=5, jitter=False),
        )

        result = await orchestrator.fetch_with_retry("apod", APOD_PARAMS)

        assert isinstance(result, RateLimited)
        assert sleep.delays == [5.0, 10.0, 20.0, 30.0, 30.0]
        assert stub.calls == 6

    @pytest.mark.asyncio
    async def test_exhausted_retries_surface_rate_limit(self, sleep):
        """Test persistent throttling without cached data returns RateLimited."""
        stub = UpstreamStub(httpx.Response(429))
        orchestrator = build_test_orchestrator(stub, sleep=sleep)

        result = await orchestrator.fetch_with_retry("apod", APOD_PARAMS)

        assert result == RateLimited(status_code=429)
        assert stub.calls == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_stale_fallback_on_network_error(self, wall_clock, sleep):
        """Test a two-hour-old entry with a one-hour TTL rescues a failed refresh."""
        stub = UpstreamStub(
            json_response({"result": "ephemeris"}),
            httpx.ConnectError("network unreachable"),
        )
        metrics = MetricsCollector("gateway")
        orchestrator = build_test_orchestrator(stub, wall_clock=wall_clock, sleep=sleep, metrics=metrics)
        params = {"COMMAND": "499"}

        first = await orchestrator.fetch_with_retry("horizons", params)
        created_at = wall_clock()
        wall_clock.advance(2 * HOUR_MS)
        result = await orchestrator.fetch_with_retry("horizons", params)

        assert first.ok
        assert isinstance(result, Stale)
        assert result.data == {"result": "ephemeris"}
        assert result.created_at == created_at
        assert isinstance(result.cause, NetworkError)
        assert result.to_response().stale is True
        assert result.to_response().error is None
        assert sleep.delays == []
        assert metrics.sample("stale_responses_total", endpoint="horizons") == 1.0

    @pytest.mark.asyncio
    async def test_stale_fallback_after_exhausted_rate_limit(self, wall_clock, sleep):
        """Test throttling that outlasts the retries falls back to cached data."""
        stub = UpstreamStub(json_response({"n": 1}), httpx.Response(429))
        orchestrator = build_test_orchestrator(stub, wall_clock=wall_clock, sleep=sleep)

        await orchestrator.fetch_with_retry("iss-position")
        wall_clock.advance(60000)
        result = await orchestrator.fetch_with_retry("iss-position")

        assert isinstance(result, Stale)
        assert result.data == {"n": 1}
        assert isinstance(result.cause, RateLimited)
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_local_throttling_conserves_quota(self, sleep):
        """Test local rejections are retried without dialing the provider."""
        limiter_clock = FakeClock()
        sleep.on_sleep = limiter_clock.advance
        stub = UpstreamStub(json_response({"n": 1}))
        orchestrator = build_test_orchestrator(stub, limiter_clock=limiter_clock, sleep=sleep)

        for _ in range(3):
            await orchestrator.fetch("iss-position", no_cache=True)
        result = await orchestrator.fetch_with_retry("iss-position", no_cache=True)

        # 5 + 10 + 20 seconds is still inside the 60 second window
        assert stub.calls == 3
        assert sleep.delays == [5.0, 10.0, 20.0]
        assert isinstance(result, Stale)
        assert result.cause == RateLimited(status_code=None, local=True)

    @pytest.mark.asyncio
    async def test_local_window_reopens_during_backoff(self, sleep):
        """Test a retry succeeds once the local window has slid."""
        limiter_clock = FakeClock()
        stub = UpstreamStub(json_response({"n": 1}), json_response({"n": 2}))
        orchestrator = build_test_orchestrator(stub, limiter_clock=limiter_clock, sleep=sleep)
        for _ in range(3):
            await orchestrator.fetch("iss-position", no_cache=True)
        limiter_clock.advance(50)
        sleep.on_sleep = limiter_clock.advance

        result = await orchestrator.fetch_with_retry("iss-position", no_cache=True)

        assert result == Success({"n": 2})
        assert sleep.delays == [5.0, 10.0]
        assert stub.calls == 4

    @pytest.mark.asyncio
    async def test_http_error_not_retried(self, sleep):
        """Test non-429 failures are surfaced immediately."""
        stub = UpstreamStub(httpx.Response(404), json_response(APOD_PAYLOAD))
        orchestrator = build_test_orchestrator(stub, sleep=sleep)

        result = await orchestrator.fetch_with_retry("apod", APOD_PARAMS)

        assert result == HttpError(404, "Not Found")
        assert stub.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_network_error_without_cache(self, sleep):
        """Test a failure with nothing cached surfaces the error."""
        stub = UpstreamStub(httpx.ConnectError("offline"))
        orchestrator = build_test_orchestrator(stub, sleep=sleep)

        result = await orchestrator.fetch_with_retry("apod", APOD_PARAMS)

        assert isinstance(result, NetworkError)
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unexpected_failure_falls_back_to_stale(self, sleep):
        """Test an unexpected upstream failure still gets the stale fallback."""
        stub = UpstreamStub(json_response(APOD_PAYLOAD), RuntimeError("decoder exploded"))
        orchestrator = build_test_orchestrator(stub, sleep=sleep)

        await orchestrator.fetch("apod", APOD_PARAMS)
        result = await orchestrator.fetch_with_retry("apod", APOD_PARAMS, no_cache=True)

        assert isinstance(result, Stale)
        assert result.data == APOD_PAYLOAD
        assert result.cause == NetworkError("Unexpected error: RuntimeError")

    @pytest.mark.asyncio
    async def test_validation_error_not_retried_or_rescued(self, sleep):
        """Test validation failures bypass retry and stale fallback."""
        stub = UpstreamStub(json_response(APOD_PAYLOAD))
        orchestrator = build_test_orchestrator(stub, sleep=sleep)
        await orchestrator.fetch_with_retry("apod", APOD_PARAMS)

        result = await orchestrator.fetch_with_retry("apod", {**APOD_PARAMS, "count": 1000})

        assert isinstance(result, ValidationError)
        assert stub.calls == 1
        assert sleep.delays == []
