"""
Retry policy — bounded exponential backoff for transient failures.

attempt 1 runs immediately; before attempt n (n ≥ 2) the executor
waits ``base_delay * factor ** (n - 2)`` seconds, capped at
``max_delay``, plus optional jitter.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a retryable step."""

    attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0        # fraction of the delay added at random

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")

    @classmethod
    def single(cls) -> RetryPolicy:
        """No retries."""
        return cls(attempts=1)

    @classmethod
    def from_config(cls, config) -> RetryPolicy:
        return cls(
            attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            factor=config.retry_factor,
            max_delay=config.retry_max_delay,
        )

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (1-based)."""
        if attempt <= 1:
            return 0.0
        delay = min(self.base_delay * (self.factor ** (attempt - 2)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def schedule(self) -> list[float]:
        """Delays before attempts 2..n, for logging and tests."""
        return [self.delay_before(n) for n in range(2, self.attempts + 1)]
