"""
Endpoint registry package for the Gateway.

Holds the descriptor models and the loader for the data file that lists
every external endpoint the gateway is allowed to reach.
"""

from .models import EndpointDescriptor, ParamSpec
from .endpoint_registry import DEFAULT_DATA_FILE, EndpointRegistry

__all__ = ["DEFAULT_DATA_FILE", "EndpointDescriptor", "EndpointRegistry", "ParamSpec"]
