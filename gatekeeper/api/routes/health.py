from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from gatekeeper.core.errors import WindowStoreError
from gatekeeper.core.metrics import format_prometheus

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Reports the window store backend and how many records it holds. The
    endpoint stays up when the store is unreachable (the limiters fail open),
    so a store failure is reported as ``degraded`` rather than an error.

    Returns:
        dict: ``status``, ``store`` backend name and ``records`` count.
    """

    store = request.app.state.window_store
    payload: dict = {"status": "ok", "store": type(store).__name__}
    try:
        payload["records"] = store.count_records()
    except WindowStoreError as exc:
        payload["status"] = "degraded"
        payload["store_error"] = exc.code
    return payload


@router.get("/metrics", response_class=PlainTextResponse)
def metrics() -> str:
    """Rate limiter counters in Prometheus text exposition format."""

    return format_prometheus()
