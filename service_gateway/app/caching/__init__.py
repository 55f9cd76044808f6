"""
Caching package for the Gateway.

Holds the bounded response cache that keeps upstream payloads until their
endpoint TTL runs out.
"""

from .response_cache import CacheEntry, ResponseCache, make_cache_key

__all__ = ["CacheEntry", "ResponseCache", "make_cache_key"]
