"""
Typed outcomes of a gateway fetch.

Every call through the orchestrator ends in exactly one of these variants;
transport exceptions are converted before they reach the caller.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


RATE_LIMITED = "RATE_LIMITED"


class GatewayResponse(BaseModel):
    """Wire shape returned to the presentation context."""

    model_config = ConfigDict(populate_by_name=True)

    data: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    stale: bool = False


@dataclass(frozen=True)
class Success:
    data: Any
    from_cache: bool = False

    ok = True

    def to_response(self) -> GatewayResponse:
        return GatewayResponse(data=self.data)


@dataclass(frozen=True)
class Stale:
    """Expired cached data returned in place of a failed refresh."""

    data: Any
    created_at: float
    cause: "GatewayResult"

    ok = True

    def to_response(self) -> GatewayResponse:
        return GatewayResponse(data=self.data, stale=True)


@dataclass(frozen=True)
class RateLimited:
    """Throttled either by the provider (429) or by the local limiter."""

    status_code: Optional[int] = 429
    local: bool = False

    ok = False

    def to_response(self) -> GatewayResponse:
        return GatewayResponse(error=RATE_LIMITED, status_code=self.status_code)


@dataclass(frozen=True)
class HttpError:
    status: int
    message: str

    ok = False

    def to_response(self) -> GatewayResponse:
        return GatewayResponse(error=f"HTTP {self.status}: {self.message}", status_code=self.status)


@dataclass(frozen=True)
class ValidationError:
    reason: str

    ok = False

    def to_response(self) -> GatewayResponse:
        return GatewayResponse(error=f"Invalid request: {self.reason}")


@dataclass(frozen=True)
class NetworkError:
    message: str

    ok = False

    def to_response(self) -> GatewayResponse:
        return GatewayResponse(error=self.message)


GatewayResult = Union[Success, Stale, RateLimited, HttpError, ValidationError, NetworkError]
