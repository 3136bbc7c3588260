"""Factory for creating window store instances."""

from __future__ import annotations

from gatekeeper.adapters.rate_limit.base import WindowStore
from gatekeeper.adapters.rate_limit.in_memory import InMemoryWindowStore
from gatekeeper.adapters.rate_limit.sql import SqlWindowStore
from gatekeeper.core.config import StoreSettings, settings
from gatekeeper.core.errors import ConfigurationAppError


def create_window_store(store_settings: StoreSettings | None = None) -> WindowStore:
    """Instantiate the window store selected by ``STORE_BACKEND``.

    Args:
        store_settings: Optional store settings; defaults to global settings.

    Returns:
        WindowStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend is unknown or misconfigured.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryWindowStore()

    if backend == "sql":
        if not cfg.database_url:
            raise ConfigurationAppError(
                code="store_missing_database_url",
                message="SQL store requires STORE_DATABASE_URL",
            )
        return SqlWindowStore.from_url(
            cfg.database_url,
            timeout_seconds=cfg.timeout_seconds,
            echo=cfg.echo,
        )

    raise ConfigurationAppError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{backend}'. Supported backends: memory, sql",
    )
