"""
Configuration management for the Astronomer gateway.

Every setting can be supplied through the environment with the ``ASTRO_``
prefix (``ASTRO_CACHE_CAPACITY=200``) or through a local ``.env`` file.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewaySettings(BaseSettings):
    """Settings for the gateway service and its components."""

    model_config = SettingsConfigDict(
        env_prefix="ASTRO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    service_name: str = "gateway"
    host: str = "127.0.0.1"
    port: int = 8765

    # Interactive API docs (/docs, /openapi.json); off unless asked for
    enable_docs: bool = False

    # Endpoint registry; None selects the packaged endpoints.json
    endpoints_file: Optional[str] = None

    # Cache
    cache_capacity: int = Field(default=100, ge=1)

    # Rate limiting
    rate_window_seconds: float = Field(default=60.0, gt=0)

    # Retry on provider throttling
    retry_max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=5.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_jitter: bool = True

    # Upstream transport
    request_timeout: float = Field(default=10.0, gt=0)
    user_agent: str = "Astronomer/1.0.0"

    # Presentation context origins allowed to call the boundary
    allowed_origins: List[str] = Field(default_factory=list)

    # Observability
    metrics_port: Optional[int] = None


def get_settings(**overrides) -> GatewaySettings:
    """Build settings from the environment, with explicit overrides applied."""
    return GatewaySettings(**overrides)
