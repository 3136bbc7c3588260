"""Window store adapters.

The limiter depends on a single atomic ``record_and_count`` operation. Any
backend offering compare-and-swap or a transactional read-modify-write can
implement it; this package ships an in-process store and a SQL store.
"""

from gatekeeper.adapters.rate_limit.base import WindowCount, WindowStore
from gatekeeper.adapters.rate_limit.factory import create_window_store
from gatekeeper.adapters.rate_limit.in_memory import InMemoryWindowStore
from gatekeeper.adapters.rate_limit.sql import SqlWindowStore

__all__ = [
    "InMemoryWindowStore",
    "SqlWindowStore",
    "WindowCount",
    "WindowStore",
    "create_window_store",
]
