"""In-memory sliding window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: the lock spans the whole read-modify-write, which is what
  makes ``record_and_count`` atomic for this backend.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from gatekeeper.adapters.rate_limit.base import WindowCount, WindowStore, apply_request


@dataclass
class RateLimitRecord:
    key: str
    created_at: int
    last_updated: int
    timestamps: list[int] = field(default_factory=list)

    @property
    def newest_ms(self) -> int:
        return self.timestamps[-1] if self.timestamps else self.last_updated


class InMemoryWindowStore(WindowStore):
    """Window store keeping one record per key in a dict.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker enforces its
        own independent limits. Use the SQL store for shared limits.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, RateLimitRecord] = {}

    def record_and_count(
        self, key: str, *, now_ms: int, window_ms: int, limit: int
    ) -> WindowCount:
        """Prune, count and record a request for ``key`` under the store lock.

        Raises:
            ValueError: If key is empty or window/limit are invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if window_ms < 1 or limit < 1:
            raise ValueError("window_ms and limit must be >= 1")

        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = RateLimitRecord(key=key, created_at=now_ms, last_updated=now_ms)
                self._records[key] = record

            record.timestamps, result = apply_request(
                record.timestamps, now_ms=now_ms, window_ms=window_ms, limit=limit
            )
            record.last_updated = now_ms
            return result

    def purge_idle(self, threshold_ms: int) -> int:
        with self._lock:
            stale = [k for k, r in self._records.items() if r.newest_ms < threshold_ms]
            for key in stale:
                del self._records[key]
            return len(stale)

    def count_records(self) -> int:
        with self._lock:
            return len(self._records)

    def get_record(self, key: str) -> RateLimitRecord | None:
        """Return a copy of the record for ``key`` (inspection and tests)."""
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return RateLimitRecord(
                key=record.key,
                created_at=record.created_at,
                last_updated=record.last_updated,
                timestamps=list(record.timestamps),
            )
