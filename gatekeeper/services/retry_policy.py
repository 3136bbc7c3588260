"""Contention retry and fault policy for window store calls.

The policy is a plain value object so fail-open vs. fail-closed can be chosen
at startup without touching the decision logic in ``limiter_engine``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gatekeeper.core.config import RateLimitSettings
from gatekeeper.core.errors import ConfigurationAppError


class FaultMode(str, Enum):
    """What to do once the store keeps failing after every retry."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff around the atomic store call.

    Attributes:
        max_attempts: Total store attempts, including the first one.
        base_delay_ms: Backoff base; failed attempt n waits base * 2**n.
        fault_mode: Verdict applied on exhaustion.
    """

    max_attempts: int = 3
    base_delay_ms: int = 100
    fault_mode: FaultMode = FaultMode.FAIL_OPEN

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationAppError(
                code="invalid_retry_attempts",
                message="max_attempts must be >= 1",
            )
        if self.base_delay_ms < 0:
            raise ConfigurationAppError(
                code="invalid_retry_delay",
                message="base_delay_ms must be >= 0",
            )

    @property
    def fails_open(self) -> bool:
        return self.fault_mode is FaultMode.FAIL_OPEN

    def backoff_seconds(self, failed_attempt: int) -> float:
        """Delay before the next try, given the 1-based number of the failed attempt."""
        return self.base_delay_ms * (2**failed_attempt) / 1000

    def should_retry(self, failed_attempt: int) -> bool:
        return failed_attempt < self.max_attempts

    @classmethod
    def from_settings(cls, rate_limit_settings: RateLimitSettings) -> "RetryPolicy":
        return cls(
            max_attempts=rate_limit_settings.retry_attempts,
            base_delay_ms=rate_limit_settings.retry_base_delay_ms,
            fault_mode=FaultMode.FAIL_OPEN
            if rate_limit_settings.fail_open
            else FaultMode.FAIL_CLOSED,
        )


FAIL_OPEN = RetryPolicy()
FAIL_CLOSED = RetryPolicy(fault_mode=FaultMode.FAIL_CLOSED)
