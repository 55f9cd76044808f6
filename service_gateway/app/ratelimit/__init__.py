"""
Rate limiting package for the Gateway.

Holds the sliding-window limiter that keeps outbound calls per endpoint
under the budget declared in the endpoint registry.
"""

from .sliding_window import SlidingWindowRateLimiter

__all__ = ["SlidingWindowRateLimiter"]
