"""Out-of-band sweeper bounding window store growth.

Records are never deleted on the request path. Keys that stop sending
requests (rotated addresses, abandoned fingerprints) would otherwise stay
forever, so an external scheduler periodically runs ``CleanupSweeper.sweep``
to delete records whose newest request is older than the retention period.

The retention period is unrelated to any limiter window. A sweep is
idempotent: a second run with no requests in between deletes nothing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from gatekeeper.adapters.rate_limit.base import WindowStore
from gatekeeper.adapters.rate_limit.factory import create_window_store
from gatekeeper.core import metrics
from gatekeeper.core.config import CleanupSettings, Settings, settings
from gatekeeper.core.errors import CleanupAppError, ConfigurationAppError, WindowStoreError

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class CleanupResult:
    cleanup_time_ms: int
    threshold_ms: int
    records_deleted: int


class CleanupSweeper:
    """Deletes idle rate limit records from a window store."""

    def __init__(
        self,
        store: WindowStore,
        *,
        retention_ms: int = 30 * DAY_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if retention_ms < 1:
            raise ConfigurationAppError(
                code="invalid_cleanup_retention",
                message="retention_ms must be a positive integer",
            )
        self._store = store
        self._retention_ms = retention_ms
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: WindowStore,
        cleanup_settings: CleanupSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "CleanupSweeper":
        return cls(store, retention_ms=cleanup_settings.retention_days * DAY_MS, clock=clock)

    @property
    def retention_ms(self) -> int:
        return self._retention_ms

    def sweep(self) -> CleanupResult:
        """Delete records idle for longer than the retention period.

        Returns:
            CleanupResult with the run time, cut-off and deleted count.

        Raises:
            CleanupAppError: If the store fails during the purge.
        """
        now_ms = int(self._clock() * 1000)
        threshold_ms = now_ms - self._retention_ms

        logger.info("cleanup.started", extra={"threshold_ms": threshold_ms})
        try:
            deleted = self._store.purge_idle(threshold_ms)
        except WindowStoreError as exc:
            logger.error(
                "cleanup.failed",
                extra={"error_code": exc.code, "threshold_ms": threshold_ms},
            )
            raise CleanupAppError(
                code="cleanup_failed",
                message="Failed to clean up rate limit records",
            ) from exc

        metrics.record_cleanup(deleted)
        logger.info(
            "cleanup.completed",
            extra={"records_deleted": deleted, "threshold_ms": threshold_ms},
        )
        return CleanupResult(
            cleanup_time_ms=now_ms,
            threshold_ms=threshold_ms,
            records_deleted=deleted,
        )


def run_cleanup(app_settings: Settings | None = None) -> CleanupResult:
    """Build the configured store, sweep it once and release it.

    Entry point for schedulers (see ``scripts/run_cleanup.py``).
    """
    cfg = app_settings or settings
    if cfg.store.backend == "memory":
        logger.warning(
            "cleanup.memory_backend",
            extra={"hint": "an in-memory store is private to its process; nothing is shared"},
        )

    store = create_window_store(cfg.store)
    try:
        return CleanupSweeper.from_settings(store, cfg.cleanup).sweep()
    finally:
        store.close()
