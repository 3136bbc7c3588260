"""Dual rate limiter wiring for the HTTP layer.

Two independent limiters gate every request:

- The ``ip`` limiter runs as HTTP middleware on every request and
  short-circuits with 429 before routing. Health and metrics requests are
  counted against their own, tighter ``health`` quota instead.
- The ``fingerprint`` limiter runs as a route dependency declared after the
  auth dependency, so it only applies once an identity is established.

A request must pass each applicable check. Limiters are built once at startup
from settings and stored on ``app.state``; the per-request path never reads
configuration.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from gatekeeper.adapters.rate_limit.base import WindowStore
from gatekeeper.core.config import RateLimitSettings, settings
from gatekeeper.core.errors import RateLimitCheckFailedError, RateLimitExceededError
from gatekeeper.core.identity import resolve_client_ip, resolve_fingerprint
from gatekeeper.services.limiter_engine import RateLimitConfig, RateLimitDecision, Scope
from gatekeeper.services.rate_limiter import ScopedRateLimiter
from gatekeeper.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS_MESSAGE = "Too many requests, please try again later"
CHECK_FAILED_MESSAGE = "Rate limit check failed"


@dataclass(frozen=True)
class RateLimiters:
    """The scoped limiters plus HTTP-facing options."""

    ip: ScopedRateLimiter
    fingerprint: ScopedRateLimiter
    health: ScopedRateLimiter
    health_paths: tuple[str, ...] = ()
    exempt_paths: tuple[str, ...] = ()
    include_headers: bool = True


def build_rate_limit_configs(
    rate_limit_settings: RateLimitSettings,
) -> dict[Scope, RateLimitConfig]:
    """Freeze settings into one immutable config per scope.

    Raises:
        ConfigurationAppError: If a window or quota is not positive.
    """
    rl = rate_limit_settings
    return {
        Scope.IP: RateLimitConfig(
            window_ms=rl.ip_window_ms,
            max=rl.ip_max,
            enabled=rl.ip_enabled and not rl.disabled,
        ),
        Scope.FINGERPRINT: RateLimitConfig(
            window_ms=rl.fingerprint_window_ms,
            max=rl.fingerprint_max,
            enabled=rl.fingerprint_enabled and not rl.disabled,
        ),
        Scope.HEALTH: RateLimitConfig(
            window_ms=rl.health_window_ms,
            max=rl.health_max,
            enabled=rl.health_enabled and not rl.disabled,
        ),
    }


def build_rate_limiters(
    store: WindowStore,
    rate_limit_settings: RateLimitSettings | None = None,
    *,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RateLimiters:
    """Build the scoped limiters over a shared store.

    Args:
        store: Window store shared by every scope.
        rate_limit_settings: Optional settings; defaults to global settings.
        clock: Time source passed to every limiter.
        sleep: Backoff sleep passed to every limiter.

    Returns:
        RateLimiters ready to be stored on ``app.state``.
    """
    rl = rate_limit_settings or settings.rate_limit
    configs = build_rate_limit_configs(rl)
    policy = RetryPolicy.from_settings(rl)

    limiters = {
        scope: ScopedRateLimiter(
            scope=scope, config=config, store=store, policy=policy, clock=clock, sleep=sleep
        )
        for scope, config in configs.items()
    }
    rate_limiters = RateLimiters(
        ip=limiters[Scope.IP],
        fingerprint=limiters[Scope.FINGERPRINT],
        health=limiters[Scope.HEALTH],
        health_paths=tuple(rl.health_paths_list),
        exempt_paths=tuple(rl.exempt_paths_list),
        include_headers=rl.include_headers,
    )

    logger.info(
        "rate_limit.configured",
        extra={
            "ip_enabled": configs[Scope.IP].enabled,
            "ip_max": configs[Scope.IP].max,
            "ip_window_ms": configs[Scope.IP].window_ms,
            "fingerprint_enabled": configs[Scope.FINGERPRINT].enabled,
            "fingerprint_max": configs[Scope.FINGERPRINT].max,
            "fingerprint_window_ms": configs[Scope.FINGERPRINT].window_ms,
            "health_enabled": configs[Scope.HEALTH].enabled,
            "health_max": configs[Scope.HEALTH].max,
            "fault_mode": policy.fault_mode.value,
        },
    )
    return rate_limiters


def get_rate_limiters(request: Request) -> RateLimiters:
    """Return the limiters built for this application."""
    return request.app.state.rate_limiters


def build_rate_limit_headers(
    *, limit: int, remaining: int, reset_at_ms: int, retry_after: int, include_headers: bool
) -> dict[str, str]:
    headers = {"Retry-After": str(retry_after)}
    if include_headers:
        headers["X-RateLimit-Limit"] = str(limit)
        headers["X-RateLimit-Remaining"] = str(remaining)
        headers["X-RateLimit-Reset"] = str(math.ceil(reset_at_ms / 1000))
    return headers


def too_many_requests_response(retry_after: int, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": TOO_MANY_REQUESTS_MESSAGE,
            "retryAfter": retry_after,
        },
        headers=headers,
    )


def check_failed_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": CHECK_FAILED_MESSAGE},
    )


def _rejection(decision: RateLimitDecision, scope: Scope) -> RateLimitExceededError:
    return RateLimitExceededError(
        code="rate_limit_exceeded",
        message=TOO_MANY_REQUESTS_MESSAGE,
        details={
            "scope": scope.value,
            "limit": decision.limit,
            "remaining": decision.remaining,
            "retry_after": decision.retry_after_seconds or 0,
            "reset_at_ms": decision.reset_at_ms,
        },
    )


async def ip_rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the per-address limit on every request.

    Health and metrics paths are counted against the ``health`` quota, every
    other path against the ``ip`` quota. Rejections are answered here; the
    route (and the fingerprint limiter behind it) is never invoked.
    """
    limiters = get_rate_limiters(request)
    path = request.url.path
    if path in limiters.exempt_paths:
        return await call_next(request)

    limiter = limiters.health if path in limiters.health_paths else limiters.ip
    if not limiter.enabled:
        return await call_next(request)

    try:
        decision = await limiter.check(resolve_client_ip(request))
    except RateLimitCheckFailedError:
        return check_failed_response()

    if not decision.allowed:
        retry_after = decision.retry_after_seconds or 0
        return too_many_requests_response(
            retry_after,
            headers=build_rate_limit_headers(
                limit=decision.limit,
                remaining=decision.remaining,
                reset_at_ms=decision.reset_at_ms,
                retry_after=retry_after,
                include_headers=limiters.include_headers,
            ),
        )

    return await call_next(request)


async def enforce_fingerprint_rate_limit(request: Request) -> None:
    """FastAPI dependency enforcing the per-fingerprint limit.

    Skips silently when the scope is disabled or the caller has no verified
    identity (public routes).

    Raises:
        RateLimitExceededError: The fingerprint's quota is exhausted (429).
        RateLimitCheckFailedError: Store failure under fail-closed policy (500).
    """
    limiter = get_rate_limiters(request).fingerprint
    if not limiter.enabled:
        return

    fingerprint_id = resolve_fingerprint(request)
    if fingerprint_id is None:
        logger.debug("rate_limit.skipped", extra={"scope": limiter.scope.value, "reason": "no_identity"})
        return

    decision = await limiter.check(fingerprint_id)
    if not decision.allowed:
        raise _rejection(decision, limiter.scope)
