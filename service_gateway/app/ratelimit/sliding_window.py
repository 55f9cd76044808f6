"""
Sliding-window rate limiter for outbound endpoint calls.
"""

import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger
from ..registry import EndpointRegistry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class SlidingWindowRateLimiter:
    """Per-endpoint call counter over a trailing time window.

    Limits come from the registry (``rate_limit`` calls per window). State is
    process-local; the provider's own 429 stays authoritative.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        *,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.registry = registry
        self.window_seconds = window_seconds
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limiter")
        self._windows: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, window: Deque[float], now: float) -> None:
        # Timestamps are appended in order, so expired ones sit at the left
        while window and now - window[0] >= self.window_seconds:
            window.popleft()

    def admit(self, endpoint_id: str) -> bool:
        """Record a call and return True if it fits in the endpoint's window."""
        limit = self.registry.describe(endpoint_id).rate_limit

        with self._lock:
            now = self.clock()
            window = self._windows.setdefault(endpoint_id, deque())
            self._prune(window, now)

            if len(window) >= limit:
                current_count = len(window)
                admitted = False
            else:
                window.append(now)
                admitted = True

        if not admitted:
            self.logger.warning(
                "Rate limit exceeded",
                endpoint_id=endpoint_id,
                current_count=current_count,
                limit=limit
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_hits_total", endpoint=endpoint_id, source="local")
        return admitted

    def status(self, endpoint_id: str) -> Dict[str, Any]:
        """Report the window for an endpoint without recording a call."""
        limit = self.registry.describe(endpoint_id).rate_limit

        with self._lock:
            now = self.clock()
            window = self._windows.get(endpoint_id)
            if window is not None:
                self._prune(window, now)
            current_count = len(window) if window else 0
            reset_in = self.window_seconds - (now - window[0]) if window else 0.0

        return {
            "current_count": current_count,
            "limit": limit,
            "remaining": max(0, limit - current_count),
            "reset_in_seconds": max(0.0, reset_in)
        }
