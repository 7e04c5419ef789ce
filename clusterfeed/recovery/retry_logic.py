"""
ClusterFeed Retry Logic
======================

Retry policy for feed fetches: the delay schedule between transient-error
retries and the hard attempt budget that bounds proxy failover.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..config.settings import FetchSettings, RetryStrategyName


class RetryStrategy(Enum):
    """Different retry strategy types."""
    FIXED_DELAY = "fixed"              # Same interval between every retry
    LINEAR_BACKOFF = "linear"          # retry_delay * retry number
    EXPONENTIAL_BACKOFF = "exponential"  # retry_delay * 2 ** (retry number - 1)

    @classmethod
    def from_setting(cls, name: RetryStrategyName) -> "RetryStrategy":
        return cls(name.value)


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration shared by every fetch task."""
    max_retries: int = 2
    retry_delay: float = 2.0
    strategy: RetryStrategy = RetryStrategy.FIXED_DELAY
    max_delay: float = 60.0
    jitter: bool = False
    exponential_base: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.retry_delay < 0:
            raise ValueError("retry_delay cannot be negative")

    @classmethod
    def from_settings(cls, settings: FetchSettings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            strategy=RetryStrategy.from_setting(settings.retry_strategy),
            max_delay=settings.max_retry_delay,
            jitter=settings.retry_jitter,
        )

    def attempt_budget(self, proxy_count: int) -> int:
        """Worst-case number of requests for one URL.

        Every proxy slot, plus the final no-proxy slot, gets a fresh retry
        budget of ``max_retries`` retries after its first attempt.
        """
        return (max(proxy_count, 0) + 1) * (self.max_retries + 1)

    def can_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        retry_number = max(retry_number, 1)

        if self.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.retry_delay * retry_number
        elif self.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = self.retry_delay * (self.exponential_base ** (retry_number - 1))
        else:
            delay = self.retry_delay

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            # Add ±25% jitter
            jitter_amount = delay * 0.25
            delay += random.uniform(-jitter_amount, jitter_amount)

        return max(0.0, delay)


@dataclass
class RetryAttempt:
    """Information about one request made for a URL."""
    attempt_number: int
    retry_count: int
    proxy_index: int
    status: Optional[int]
    error: Optional[str]
    delay: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class AttemptLog:
    """Per-URL attempt history, local to one fetch task."""
    attempts: List[RetryAttempt] = field(default_factory=list)

    def record(self, attempt: RetryAttempt) -> None:
        self.attempts.append(attempt)

    @property
    def count(self) -> int:
        return len(self.attempts)

    @property
    def proxy_rotations(self) -> int:
        return len({a.proxy_index for a in self.attempts}) - 1 if self.attempts else 0

    @property
    def last_error(self) -> Optional[str]:
        for attempt in reversed(self.attempts):
            if attempt.error:
                return attempt.error
        return None
