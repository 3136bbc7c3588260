"""Rate limit key resolution from request context.

Neither resolver raises: an address is always available (falling back to
"unknown"), and a missing identity simply means the fingerprint scope does
not apply to this request.
"""

from __future__ import annotations

from fastapi import Request


def resolve_client_ip(request: Request) -> str:
    """Get the client address for the per-address limiter.

    Handles common proxy headers to get the real client IP and falls back to
    the direct connection address.

    Args:
        request: FastAPI request object.

    Returns:
        Client IP address string.
    """
    # X-Forwarded-For can contain multiple IPs; first is the client
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def resolve_fingerprint(request: Request) -> str | None:
    """Return the verified fingerprint set by the auth step, if any.

    Returns:
        Fingerprint id, or None on public routes / unauthenticated requests.
    """
    fingerprint_id = getattr(request.state, "fingerprint_id", None)
    return fingerprint_id or None
