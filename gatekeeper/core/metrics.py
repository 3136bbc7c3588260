"""Prometheus-style metrics: in-memory counters updated by the limiters."""

from __future__ import annotations

import time
from collections import defaultdict

# (scope, outcome) -> count. outcome is allowed, rejected, fault_open or fault_closed.
_decision_counts: dict[tuple[str, str], int] = defaultdict(int)
# (scope, error_code) -> count of failed store attempts
_store_error_counts: dict[tuple[str, str], int] = defaultdict(int)
_cleanup_deleted_total = 0
_start_time = time.monotonic()


def record_decision(scope: str, outcome: str) -> None:
    _decision_counts[(scope, outcome)] += 1


def record_store_error(scope: str, error_code: str) -> None:
    _store_error_counts[(scope, error_code)] += 1


def record_cleanup(deleted: int) -> None:
    global _cleanup_deleted_total
    _cleanup_deleted_total += deleted


def get_decision_counts() -> dict[tuple[str, str], int]:
    return dict(_decision_counts)


def get_store_error_counts() -> dict[tuple[str, str], int]:
    return dict(_store_error_counts)


def get_uptime_seconds() -> float:
    return time.monotonic() - _start_time


def reset_metrics() -> None:
    """Zero every counter (tests)."""
    global _cleanup_deleted_total
    _decision_counts.clear()
    _store_error_counts.clear()
    _cleanup_deleted_total = 0


def format_prometheus() -> str:
    """Render metrics in Prometheus text exposition format."""
    lines = [
        "# HELP rate_limit_decisions_total Admission decisions by scope and outcome.",
        "# TYPE rate_limit_decisions_total counter",
    ]
    for (scope, outcome), count in sorted(get_decision_counts().items()):
        lines.append(f'rate_limit_decisions_total{{scope="{scope}",outcome="{outcome}"}} {count}')
    lines.append("")
    lines.extend([
        "# HELP rate_limit_store_errors_total Failed window store attempts by scope and error.",
        "# TYPE rate_limit_store_errors_total counter",
    ])
    for (scope, code), count in sorted(get_store_error_counts().items()):
        lines.append(f'rate_limit_store_errors_total{{scope="{scope}",code="{code}"}} {count}')
    lines.append("")
    lines.extend([
        "# HELP rate_limit_cleanup_deleted_total Records deleted by the sweeper.",
        "# TYPE rate_limit_cleanup_deleted_total counter",
        f"rate_limit_cleanup_deleted_total {_cleanup_deleted_total}",
        "",
        "# HELP process_uptime_seconds Process uptime in seconds.",
        "# TYPE process_uptime_seconds gauge",
        f"process_uptime_seconds {get_uptime_seconds():.2f}",
    ])
    return "\n".join(lines) + "\n"
