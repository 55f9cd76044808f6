"""
Shared error handling for the Astronomer gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class GatewayException(Exception):
    """Base exception for gateway components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class RegistryConfigError(GatewayException):
    """Endpoint registry data could not be loaded."""

    def __init__(self, message: str = "Invalid endpoint registry", details: Optional[Dict[str, Any]] = None):
        super().__init__("REGISTRY_CONFIG_ERROR", message, details)


class EndpointNotFoundError(GatewayException):
    """Lookup of an endpoint id that the registry does not know."""

    def __init__(self, endpoint_id: str):
        super().__init__(
            "ENDPOINT_NOT_FOUND",
            f"Unknown endpoint: {endpoint_id}",
            {"endpoint_id": endpoint_id}
        )
        self.endpoint_id = endpoint_id
