"""Application factory for FastAPI app.

Centralizes app construction (store, limiters, middleware, handlers,
routers) so tests can build isolated apps with their own store and clock.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI

from gatekeeper.adapters.rate_limit.base import WindowStore
from gatekeeper.adapters.rate_limit.factory import create_window_store
from gatekeeper.api.routes import health_router, session_router
from gatekeeper.core.config import RateLimitSettings, settings
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import request_id_middleware
from gatekeeper.core.openapi import apply_openapi_customizations
from gatekeeper.core.rate_limit import build_rate_limiters, ip_rate_limit_middleware


def create_app(
    *,
    store: WindowStore | None = None,
    rate_limit_settings: RateLimitSettings | None = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Limiter configuration is validated here, so a non-positive window or
    quota fails at startup and never at request time.

    Args:
        store: Window store; built from ``STORE_*`` settings when omitted.
        rate_limit_settings: Limiter settings; global settings when omitted.
        clock: Time source for both limiters.
        sleep: Backoff sleep for both limiters.
        configure_logs: Install the root log handler.

    Returns:
        Configured FastAPI app with limiters on ``app.state``.
    """
    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(settings.log)

    window_store = store or create_window_store(settings.store)
    rate_limiters = build_rate_limiters(
        window_store, rate_limit_settings or settings.rate_limit, clock=clock, sleep=sleep
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        window_store.close()

    app = FastAPI(
        title="Gatekeeper API",
        description=(
            "Request admission control: sliding window rate limits per client "
            "address and per authenticated fingerprint, backed by a shared "
            "window store."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.window_store = window_store
    app.state.rate_limiters = rate_limiters

    # Middleware: the last one added runs first, so request ids wrap the limiter
    app.middleware("http")(ip_rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(session_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
