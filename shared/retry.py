"""
Backoff policy for retrying throttled upstream calls.
"""

import random


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_retries: int = 3,
                 base_delay: float = 5.0,
                 max_delay: float = 30.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential"):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first one."""
        return self.max_retries + 1


def calculate_delay(retry_number: int, config: RetryConfig) -> float:
    """Calculate the wait in seconds before retry number ``retry_number`` (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (retry_number - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * retry_number
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
