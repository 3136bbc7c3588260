"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    scope: str
    attempts: int
    limit: int
    remaining: int
    retry_after: int
    reset_at_ms: int
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised at startup when limiter configuration is invalid."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class RateLimitExceededError(AppError):
    """Raised when a scope's quota is exhausted for the caller."""


class RateLimitCheckFailedError(AppError):
    """Raised when the store keeps failing and the policy is fail-closed."""


class CleanupAppError(AppError):
    """Raised when the record sweeper cannot complete."""


class WindowStoreError(AppError):
    """Base class for transient window store failures (retryable)."""


class StoreContentionError(WindowStoreError):
    """A concurrent writer updated the record between read and write."""


class StoreUnavailableError(WindowStoreError):
    """The backing store could not be reached or timed out."""
