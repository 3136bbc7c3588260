"""Window store interface.

The limiter should depend on this abstraction (not the concrete implementation)
so storage backends can be swapped with no change to the decision logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowCount:
    """Result of an atomic record-and-count operation.

    Attributes:
        count: Requests inside the window before this one was recorded.
        oldest_ms: Oldest surviving timestamp (epoch ms), None if the window was empty.
    """

    count: int
    oldest_ms: int | None


def prune_window(timestamps: list[int], *, now_ms: int, window_ms: int) -> list[int]:
    """Keep timestamps strictly newer than ``now_ms - window_ms``, oldest first."""
    window_start = now_ms - window_ms
    return sorted(ts for ts in timestamps if ts > window_start)


def apply_request(
    timestamps: list[int], *, now_ms: int, window_ms: int, limit: int
) -> tuple[list[int], WindowCount]:
    """Compute the new timestamp list and the count for one request.

    Shared by every backend so they agree on the sliding window semantics:
    the request is appended only when the pruned count is below ``limit``.

    Returns:
        Tuple of (timestamps to persist, WindowCount for the decision).
    """
    valid = prune_window(timestamps, now_ms=now_ms, window_ms=window_ms)
    result = WindowCount(count=len(valid), oldest_ms=valid[0] if valid else None)
    if len(valid) < limit:
        valid.append(now_ms)
    return valid, result


class WindowStore(ABC):
    """Interface for sliding window stores."""

    @abstractmethod
    def record_and_count(
        self, key: str, *, now_ms: int, window_ms: int, limit: int
    ) -> WindowCount:
        """Atomically prune, count and (when under limit) record a request.

        Args:
            key: Namespaced record key (``scope:identifier``).
            now_ms: Current time in epoch milliseconds.
            window_ms: Sliding window size in milliseconds.
            limit: Maximum requests admitted within the window.

        Returns:
            WindowCount with the pre-append count and oldest surviving timestamp.

        Raises:
            StoreContentionError: A concurrent writer won the race.
            StoreUnavailableError: The backend failed or timed out.
        """
        raise NotImplementedError

    @abstractmethod
    def purge_idle(self, threshold_ms: int) -> int:
        """Delete records whose newest timestamp is older than ``threshold_ms``.

        Returns:
            Number of deleted records.
        """
        raise NotImplementedError

    @abstractmethod
    def count_records(self) -> int:
        """Return the number of stored records."""
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources (no-op by default)."""
