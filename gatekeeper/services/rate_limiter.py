"""Scoped rate limiter: window store + retry policy + decision logic.

One instance per scope is built at startup with an immutable configuration.
``check`` is the single admission entry point; it never reads settings.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Awaitable, Callable

from fastapi.concurrency import run_in_threadpool

from gatekeeper.adapters.rate_limit.base import WindowCount, WindowStore
from gatekeeper.core import metrics
from gatekeeper.core.errors import RateLimitCheckFailedError, WindowStoreError
from gatekeeper.services.limiter_engine import (
    RateLimitConfig,
    RateLimitDecision,
    Scope,
    build_key,
    evaluate,
    fail_open_decision,
)
from gatekeeper.services.retry_policy import FAIL_OPEN, RetryPolicy

logger = logging.getLogger(__name__)


def hash_identifier(identifier: str) -> str:
    """Hash a limiter key or identifier for logging without exposing it."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


class ScopedRateLimiter:
    """Sliding window limiter for one scope."""

    def __init__(
        self,
        *,
        scope: Scope,
        config: RateLimitConfig,
        store: WindowStore,
        policy: RetryPolicy = FAIL_OPEN,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the limiter.

        Args:
            scope: Keyspace this limiter enforces.
            config: Immutable window/quota/enabled values.
            store: Window store shared with the other scope and the sweeper.
            policy: Retry and fault policy for store failures.
            clock: Time source returning UNIX time in seconds.
            sleep: Awaitable used for backoff between store attempts.
        """
        self.scope = scope
        self.config = config
        self._store = store
        self._policy = policy
        self._clock = clock
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    async def check(self, identifier: str) -> RateLimitDecision:
        """Record a request for ``identifier`` and decide whether it may proceed.

        Returns:
            RateLimitDecision; ``degraded`` is set when admitted by fail-open.

        Raises:
            RateLimitCheckFailedError: Store kept failing and the policy is fail-closed.
        """
        key = build_key(self.scope, identifier)

        window, now_ms = await self._record_with_retry(key)
        if window is None:
            return fail_open_decision(self.config, now_ms)

        decision = evaluate(window, self.config, now_ms)
        log_extra = {
            "scope": self.scope.value,
            "key_hash": hash_identifier(key),
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_ms": self.config.window_ms,
        }

        if decision.allowed:
            metrics.record_decision(self.scope.value, "allowed")
            logger.info("rate_limit.allowed", extra=log_extra)
        else:
            metrics.record_decision(self.scope.value, "rejected")
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
            )
        return decision

    async def _record_with_retry(self, key: str) -> tuple[WindowCount | None, int]:
        """Run the atomic store call under the retry policy.

        The clock is read on every attempt, so a request admitted after backoff
        is recorded at the time it was actually counted. The call is shielded:
        if the caller goes away mid-flight, the store operation still completes
        and an admitted slot stays consumed.

        Returns:
            (WindowCount, now_ms) of the successful attempt, or (None, now_ms)
            of the last attempt when exhausted under a fail-open policy.
        """
        attempt = 0
        while True:
            attempt += 1
            now_ms = self._now_ms()
            store_call = asyncio.ensure_future(
                run_in_threadpool(
                    self._store.record_and_count,
                    key,
                    now_ms=now_ms,
                    window_ms=self.config.window_ms,
                    limit=self.config.max,
                )
            )
            try:
                return await asyncio.shield(store_call), now_ms
            except asyncio.CancelledError:
                store_call.add_done_callback(self._abandoned_call_logger(key))
                raise
            except WindowStoreError as exc:
                metrics.record_store_error(self.scope.value, exc.code)
                if not self._policy.should_retry(attempt):
                    self._on_exhausted(key, attempt, exc)
                    return None, now_ms

                delay = self._policy.backoff_seconds(attempt)
                logger.warning(
                    "rate_limit.store_retry",
                    extra={
                        "scope": self.scope.value,
                        "key_hash": hash_identifier(key),
                        "attempt": attempt,
                        "error_code": exc.code,
                        "backoff_s": delay,
                    },
                )
                await self._sleep(delay)

    def _abandoned_call_logger(self, key: str) -> Callable[[asyncio.Future], None]:
        """Done-callback reporting a store call whose caller was cancelled."""

        def _log(store_call: asyncio.Future) -> None:
            if store_call.cancelled():
                return
            exc = store_call.exception()
            if exc is None:
                return
            logger.error(
                "rate_limit.abandoned_store_call_failed",
                extra={
                    "scope": self.scope.value,
                    "key_hash": hash_identifier(key),
                    "error_type": type(exc).__name__,
                },
            )

        return _log

    def _on_exhausted(self, key: str, attempts: int, exc: WindowStoreError) -> None:
        """Apply the fault policy once every attempt has failed.

        Returns normally under fail-open; the caller then admits the request.

        Raises:
            RateLimitCheckFailedError: The policy is fail-closed.
        """
        log_extra = {
            "scope": self.scope.value,
            "key_hash": hash_identifier(key),
            "attempts": attempts,
            "error_code": exc.code,
            "fault_mode": self._policy.fault_mode.value,
        }

        if self._policy.fails_open:
            metrics.record_decision(self.scope.value, "fault_open")
            logger.error("rate_limit.fault", extra=log_extra)
            return

        metrics.record_decision(self.scope.value, "fault_closed")
        logger.error("rate_limit.fault", extra=log_extra)
        raise RateLimitCheckFailedError(
            code="rate_limit_check_failed",
            message="Rate limit check failed",
            details={"scope": self.scope.value, "attempts": attempts},
        ) from exc
