"""Sliding window decision logic.

Everything here is pure: given the count returned by the window store and the
scope's configuration, decide admit/reject and compute the retry hint. No I/O,
no clock reads, no settings lookups.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from gatekeeper.adapters.rate_limit.base import WindowCount
from gatekeeper.core.errors import ConfigurationAppError


class Scope(str, Enum):
    """Rate limit dimension. Each scope is a disjoint keyspace."""

    IP = "ip"
    FINGERPRINT = "fingerprint"
    # Per-address quota for health and metrics requests
    HEALTH = "health"


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable per-scope limiter configuration.

    Attributes:
        window_ms: Sliding window size in milliseconds.
        max: Maximum requests admitted within any trailing window.
        enabled: Whether the scope is enforced at all.
    """

    window_ms: int
    max: int
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.window_ms < 1:
            raise ConfigurationAppError(
                code="invalid_rate_limit_window",
                message="window_ms must be a positive integer",
                details={"context": {"window_ms": self.window_ms}},
            )
        if self.max < 1:
            raise ConfigurationAppError(
                code="invalid_rate_limit_max",
                message="max must be a positive integer",
                details={"context": {"max": self.max}},
            )


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window for the scope.
        remaining: Slots left in the window after this request (0 when blocked).
        reset_at_ms: When the oldest counted request leaves the window (epoch ms).
        retry_after_seconds: Suggested wait when blocked, None when allowed.
        degraded: True when admitted by the fail-open policy after store faults.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None = None
    degraded: bool = False


def build_key(scope: Scope, identifier: str) -> str:
    """Namespace an identifier into its scope's keyspace."""
    return f"{scope.value}:{identifier}"


def decide(count: int, limit: int) -> bool:
    """Admit iff the window holds fewer than ``limit`` requests."""
    return count < limit


def compute_retry_after(oldest_ms: int, window_ms: int, now_ms: int) -> int:
    """Seconds until the oldest counted request leaves the window.

    Clamped to zero so clock skew between writers never yields a negative hint.
    """
    return max(0, math.ceil((oldest_ms + window_ms - now_ms) / 1000))


def evaluate(window: WindowCount, config: RateLimitConfig, now_ms: int) -> RateLimitDecision:
    """Turn a store result into an admission decision."""
    oldest_ms = window.oldest_ms if window.oldest_ms is not None else now_ms
    reset_at_ms = oldest_ms + config.window_ms

    if decide(window.count, config.max):
        return RateLimitDecision(
            allowed=True,
            limit=config.max,
            remaining=max(0, config.max - window.count - 1),
            reset_at_ms=reset_at_ms,
        )

    return RateLimitDecision(
        allowed=False,
        limit=config.max,
        remaining=0,
        reset_at_ms=reset_at_ms,
        retry_after_seconds=compute_retry_after(oldest_ms, config.window_ms, now_ms),
    )


def fail_open_decision(config: RateLimitConfig, now_ms: int) -> RateLimitDecision:
    """Decision used when the store is unhealthy and the policy admits anyway."""
    return RateLimitDecision(
        allowed=True,
        limit=config.max,
        remaining=config.max,
        reset_at_ms=now_ms + config.window_ms,
        degraded=True,
    )
