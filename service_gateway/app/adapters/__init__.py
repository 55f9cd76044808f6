"""
Adapters package for the Gateway Service.

Contains the HTTP client wrapper for external data providers. The adapter
encapsulates:

- Request shapes (query string for GET, JSON body for POST)
- Default headers
- Mapping of transport failures and status codes to gateway results

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .upstream_client import UpstreamClient

__all__ = ["UpstreamClient"]
