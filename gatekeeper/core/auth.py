"""API key authentication establishing the caller's fingerprint.

Keys are validated against comma-separated ``key:fingerprint`` pairs from
environment variables. On success the verified fingerprint id is stored on
``request.state.fingerprint_id``, which is all the fingerprint rate limiter
reads. Token issuance and key management live elsewhere.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from gatekeeper.core.config import settings
from gatekeeper.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> dict[str, str]:
    """Parse comma-separated ``key:fingerprint`` pairs into a mapping.

    Args:
        keys_string: Comma-separated pairs, or None.

    Returns:
        Mapping of API key to fingerprint id. Entries without a fingerprint
        part are skipped.

    Examples:
        >>> parse_api_keys("key1:fp-1, key2:fp-2")
        {'key1': 'fp-1', 'key2': 'fp-2'}
        >>> parse_api_keys(None)
        {}
    """
    if not keys_string:
        return {}

    keys: dict[str, str] = {}
    for entry in keys_string.split(","):
        key, sep, fingerprint = entry.strip().partition(":")
        if sep and key.strip() and fingerprint.strip():
            keys[key.strip()] = fingerprint.strip()
    return keys


def validate_api_key(provided_key: str) -> str:
    """Validate the key and return the fingerprint it is bound to.

    Args:
        provided_key: API key to validate.

    Returns:
        Verified fingerprint id.

    Raises:
        AuthenticationAppError: If the key is invalid or no keys are configured.
    """
    valid_keys = parse_api_keys(settings.app.api_keys)

    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={"reason": "api_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    fingerprint_id = valid_keys.get(provided_key)
    if fingerprint_id is None:
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": hashlib.sha256(provided_key.encode()).hexdigest()[:16],
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )
    return fingerprint_id


async def verify_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency authenticating the caller.

    Must be declared before ``enforce_fingerprint_rate_limit`` so the
    fingerprint is on the request when the limiter runs.

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.api_key_required and not x_api_key:
        logger.debug("auth.skipped", extra={"reason": "auth_required_false"})
        return

    if not x_api_key:
        logger.warning("auth.missing_key", extra={"api_key_present": False})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        fingerprint_id = validate_api_key(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    request.state.fingerprint_id = fingerprint_id
    logger.info(
        "auth.success",
        extra={"fingerprint_hash": hashlib.sha256(fingerprint_id.encode()).hexdigest()[:16]},
    )
