"""
Endpoint descriptors: the call contract of one external data source.
"""

from typing import Dict, Literal, Optional, Pattern
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ALLOWED_SCHEMES = ("http", "https")


class ParamSpec(BaseModel):
    """Declared shape of a single request parameter."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["string", "number", "boolean", "date"]
    required: bool = False
    # Compiled once at load time; matched against the whole value
    pattern: Optional[Pattern[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "ParamSpec":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min {self.min} is greater than max {self.max}")
        return self


class EndpointDescriptor(BaseModel):
    """Immutable description of an external endpoint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    base_url: str
    http_method: Literal["GET", "POST"] = "GET"
    rate_limit: int = Field(gt=0, description="Max calls per rolling window")
    ttl_ms: int = Field(ge=0, description="Freshness of a successful response")
    param_schema: Dict[str, ParamSpec] = Field(default_factory=dict)
    allow_unlisted_params: bool = True

    @field_validator("http_method", mode="before")
    @classmethod
    def _upper_method(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("base_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ALLOWED_SCHEMES or not parsed.netloc:
            raise ValueError(f"base_url must be an absolute http(s) URL, got {value!r}")
        return value