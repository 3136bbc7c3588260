"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any gatekeeper import so the global
settings object is built from them and never from a developer .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123:fp-alpha,test-api-key-456:fp-beta")
os.environ.setdefault("STORE_BACKEND", "memory")

from collections.abc import Callable

import pytest
from fastapi import FastAPI

from gatekeeper.adapters.rate_limit.in_memory import InMemoryWindowStore
from gatekeeper.core import metrics
from gatekeeper.core.app_factory import create_app
from gatekeeper.core.config import RateLimitSettings


class FakeClock:
    """Deterministic clock returning UNIX seconds."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance_ms(self, ms: int) -> None:
        self.current += ms / 1000


class SleepRecorder:
    """Async sleep replacement recording requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset_metrics()
    yield
    metrics.reset_metrics()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def memory_store() -> InMemoryWindowStore:
    return InMemoryWindowStore()


@pytest.fixture
def make_app(clock: FakeClock, sleep_recorder: SleepRecorder) -> Callable[..., FastAPI]:
    """Build an isolated app; keyword overrides go to RateLimitSettings."""

    def _make(store=None, **overrides) -> FastAPI:
        return create_app(
            store=store or InMemoryWindowStore(),
            rate_limit_settings=RateLimitSettings(**overrides),
            clock=clock.time,
            sleep=sleep_recorder,
            configure_logs=False,
        )

    return _make
