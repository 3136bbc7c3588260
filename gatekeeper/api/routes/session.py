"""Minimal routes exercising both limiters.

``/v1/ping`` is public: only the per-address limiter applies.
``/v1/me`` authenticates first, then applies the per-fingerprint limiter.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from gatekeeper.core.auth import verify_api_key
from gatekeeper.core.identity import resolve_fingerprint
from gatekeeper.core.rate_limit import enforce_fingerprint_rate_limit

router = APIRouter(tags=["Session"])


@router.get("/ping")
async def ping() -> dict:
    return {"success": True, "data": {"pong": True}}


@router.get(
    "/me",
    dependencies=[Depends(verify_api_key), Depends(enforce_fingerprint_rate_limit)],
)
async def whoami(request: Request) -> dict:
    """Return the fingerprint established by the auth step."""
    return {"success": True, "data": {"fingerprintId": resolve_fingerprint(request)}}
