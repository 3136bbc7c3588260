"""Tests for the out-of-band record sweeper."""

from __future__ import annotations

from pathlib import Path

import pytest

from gatekeeper.adapters.rate_limit.in_memory import InMemoryWindowStore
from gatekeeper.adapters.rate_limit.sql import SqlWindowStore
from gatekeeper.core import metrics
from gatekeeper.core.config import CleanupSettings, Settings, StoreSettings
from gatekeeper.core.errors import CleanupAppError, ConfigurationAppError, StoreUnavailableError
from gatekeeper.services.cleanup_service import DAY_MS, CleanupSweeper, run_cleanup

NOW_MS = 100 * DAY_MS


def _seed(store, key: str, at_ms: int) -> None:
    store.record_and_count(key, now_ms=at_ms, window_ms=60_000, limit=10)


def _sweeper(store, retention_days: int = 30) -> CleanupSweeper:
    return CleanupSweeper(store, retention_ms=retention_days * DAY_MS, clock=lambda: NOW_MS / 1000)


class TestCleanupSweeper:
    def test_deletes_only_idle_records(self, memory_store) -> None:
        _seed(memory_store, "ip:stale", NOW_MS - 31 * DAY_MS)
        _seed(memory_store, "ip:recent", NOW_MS - 29 * DAY_MS)
        _seed(memory_store, "fingerprint:active", NOW_MS - 1_000)

        result = _sweeper(memory_store).sweep()

        assert result.records_deleted == 1
        assert result.threshold_ms == NOW_MS - 30 * DAY_MS
        assert result.cleanup_time_ms == NOW_MS
        assert memory_store.get_record("ip:stale") is None
        assert memory_store.count_records() == 2

    def test_recent_request_keeps_old_record_alive(self, memory_store) -> None:
        _seed(memory_store, "ip:a", NOW_MS - 60 * DAY_MS)
        _seed(memory_store, "ip:a", NOW_MS - 5 * DAY_MS)

        assert _sweeper(memory_store).sweep().records_deleted == 0

    def test_second_sweep_is_a_no_op(self, memory_store) -> None:
        _seed(memory_store, "ip:stale", NOW_MS - 40 * DAY_MS)
        sweeper = _sweeper(memory_store)

        assert sweeper.sweep().records_deleted == 1
        assert sweeper.sweep().records_deleted == 0

    def test_records_metric(self, memory_store) -> None:
        _seed(memory_store, "ip:stale", NOW_MS - 40 * DAY_MS)

        _sweeper(memory_store).sweep()

        assert "rate_limit_cleanup_deleted_total 1" in metrics.format_prometheus()

    def test_sweeps_sql_backend(self, tmp_path: Path) -> None:
        store = SqlWindowStore.from_url(f"sqlite:///{tmp_path / 'sweep.db'}")
        _seed(store, "ip:stale", NOW_MS - 31 * DAY_MS)
        _seed(store, "ip:fresh", NOW_MS - DAY_MS)

        assert _sweeper(store).sweep().records_deleted == 1
        assert store.get_timestamps("ip:stale") is None
        assert store.count_records() == 1
        store.close()

    def test_store_failure_raises_cleanup_error(self) -> None:
        class BrokenStore(InMemoryWindowStore):
            def purge_idle(self, threshold_ms: int) -> int:
                raise StoreUnavailableError(code="store_unavailable", message="down")

        with pytest.raises(CleanupAppError) as exc_info:
            _sweeper(BrokenStore()).sweep()

        assert exc_info.value.code == "cleanup_failed"

    def test_rejects_non_positive_retention(self, memory_store) -> None:
        with pytest.raises(ConfigurationAppError):
            CleanupSweeper(memory_store, retention_ms=0)

    def test_from_settings_uses_retention_days(self, memory_store) -> None:
        sweeper = CleanupSweeper.from_settings(memory_store, CleanupSettings(retention_days=7))

        assert sweeper.retention_ms == 7 * DAY_MS


def test_run_cleanup_against_configured_database(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'cron.db'}"
    seed_store = SqlWindowStore.from_url(url)
    seed_store.record_and_count("ip:ancient", now_ms=1_000, window_ms=60_000, limit=10)
    seed_store.close()

    result = run_cleanup(
        Settings(store=StoreSettings(backend="sql", database_url=url), cleanup=CleanupSettings(retention_days=1))
    )

    assert result.records_deleted == 1
