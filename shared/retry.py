"""
Retry policy for resilient operations.

Reconnect attempts are governed by a RetryBudget: a bounded count of
consecutive failures plus the delay to wait before the next attempt.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, Any


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 10,
                 base_delay: float = 5.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "fixed"):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay before retry number ``attempt`` (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    # Add jitter if enabled
    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        jitter = random.uniform(-jitter_amount, jitter_amount)
        delay += jitter

    return max(0.0, delay)


@dataclass
class RetryBudget:
    """Consecutive-failure budget for one connection attempt sequence."""

    config: RetryConfig = field(default_factory=RetryConfig)
    attempts: int = 0

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    @property
    def exhausted(self) -> bool:
        """True once no further automatic retries are allowed."""
        return self.attempts >= self.config.max_attempts

    def record_failure(self) -> int:
        """Count a failure; frozen once exhausted."""
        if not self.exhausted:
            self.attempts += 1
        return self.attempts

    def reset(self):
        self.attempts = 0

    def next_delay(self) -> float:
        """Delay in seconds before the next attempt."""
        return calculate_delay(max(1, self.attempts), self.config)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "max": self.config.max_attempts,
            "delay_ms": int(self.config.base_delay * 1000)
        }
