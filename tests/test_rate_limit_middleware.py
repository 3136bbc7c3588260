"""HTTP-level tests for the dual limiter composition."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from gatekeeper.adapters.rate_limit.in_memory import InMemoryWindowStore
from gatekeeper.core import metrics
from gatekeeper.core.config import RateLimitSettings
from gatekeeper.core.errors import ConfigurationAppError, StoreUnavailableError
from gatekeeper.core.rate_limit import build_rate_limiters

API_KEY = {"X-API-Key": "test-api-key-123"}
OTHER_API_KEY = {"X-API-Key": "test-api-key-456"}


class BrokenStore(InMemoryWindowStore):
    """Window store that is never reachable."""

    def record_and_count(self, key, *, now_ms, window_ms, limit):
        raise StoreUnavailableError(code="store_unavailable", message="database is down")


class TestIpLimiter:
    def test_rejects_with_429_body_and_headers(self, make_app) -> None:
        client = TestClient(make_app(ip_max=1))

        assert client.get("/v1/ping").status_code == 200
        resp = client.get("/v1/ping")

        assert resp.status_code == 429
        assert resp.json() == {
            "success": False,
            "error": "Too many requests, please try again later",
            "retryAfter": 3600,
        }
        assert resp.headers["Retry-After"] == "3600"
        assert resp.headers["X-RateLimit-Limit"] == "1"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["X-RateLimit-Reset"] == "1003600"

    def test_rejection_short_circuits_fingerprint_limiter(self, make_app) -> None:
        client = TestClient(make_app(ip_max=1, fingerprint_max=5))

        assert client.get("/v1/me", headers=API_KEY).status_code == 200
        assert client.get("/v1/me", headers=API_KEY).status_code == 429

        counts = metrics.get_decision_counts()
        assert counts[("ip", "rejected")] == 1
        assert counts[("fingerprint", "allowed")] == 1
        assert ("fingerprint", "rejected") not in counts

    def test_forwarded_addresses_are_limited_separately(self, make_app) -> None:
        client = TestClient(make_app(ip_max=1))

        assert client.get("/v1/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
        assert client.get("/v1/ping", headers={"X-Forwarded-For": "2.2.2.2, 10.0.0.1"}).status_code == 200
        assert client.get("/v1/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 429

    def test_configured_exempt_paths_are_never_limited(self, make_app) -> None:
        client = TestClient(make_app(ip_max=1, exempt_paths="/v1/ping"))

        for _ in range(3):
            assert client.get("/v1/ping").status_code == 200
        assert metrics.get_decision_counts() == {}


class TestHealthLimiter:
    def test_health_paths_have_their_own_quota(self, make_app) -> None:
        client = TestClient(make_app(ip_max=1, health_max=3))

        statuses = [client.get("/health").status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 429]
        assert client.get("/v1/ping").status_code == 200

    def test_health_rejection_reports_health_window(self, make_app) -> None:
        client = TestClient(make_app(health_max=1))

        client.get("/health")
        resp = client.get("/metrics")

        assert resp.status_code == 429
        assert resp.json()["retryAfter"] == 60
        assert resp.headers["X-RateLimit-Limit"] == "1"
        assert metrics.get_decision_counts()[("health", "rejected")] == 1

    def test_health_quota_is_per_client_address(self, make_app) -> None:
        client = TestClient(make_app(health_max=1))

        assert client.get("/health", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
        assert client.get("/health", headers={"X-Forwarded-For": "2.2.2.2"}).status_code == 200
        assert client.get("/health", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 429

    def test_health_scope_can_be_disabled(self, make_app) -> None:
        client = TestClient(make_app(health_enabled=False, health_max=1))

        for _ in range(3):
            assert client.get("/health").status_code == 200

    def test_optional_headers_can_be_turned_off(self, make_app) -> None:
        client = TestClient(make_app(ip_max=1, include_headers=False))

        client.get("/v1/ping")
        resp = client.get("/v1/ping")

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "3600"
        assert "X-RateLimit-Limit" not in resp.headers

    def test_window_slides_with_clock(self, make_app, clock) -> None:
        client = TestClient(make_app(ip_max=1, ip_window_ms=1_000))

        assert client.get("/v1/ping").status_code == 200
        assert client.get("/v1/ping").status_code == 429

        clock.advance_ms(1_001)
        assert client.get("/v1/ping").status_code == 200


class TestFingerprintLimiter:
    def test_rejects_after_auth_with_429(self, make_app) -> None:
        client = TestClient(make_app(fingerprint_max=1, fingerprint_window_ms=60_000))

        first = client.get("/v1/me", headers=API_KEY)
        second = client.get("/v1/me", headers=API_KEY)

        assert first.status_code == 200
        assert first.json()["data"]["fingerprintId"] == "fp-alpha"
        assert second.status_code == 429
        assert second.json() == {
            "success": False,
            "error": "Too many requests, please try again later",
            "retryAfter": 60,
        }
        assert second.headers["Retry-After"] == "60"
        assert second.headers["X-RateLimit-Limit"] == "1"

    def test_fingerprints_have_independent_quotas(self, make_app) -> None:
        client = TestClient(make_app(fingerprint_max=1))

        assert client.get("/v1/me", headers=API_KEY).status_code == 200
        assert client.get("/v1/me", headers=OTHER_API_KEY).status_code == 200
        assert client.get("/v1/me", headers=API_KEY).status_code == 429

    def test_public_route_is_not_fingerprint_limited(self, make_app) -> None:
        client = TestClient(make_app(fingerprint_max=1))

        for _ in range(3):
            assert client.get("/v1/ping", headers=API_KEY).status_code == 200
        assert ("fingerprint", "allowed") not in metrics.get_decision_counts()

    def test_failed_auth_does_not_consume_fingerprint_quota(self, make_app) -> None:
        client = TestClient(make_app(fingerprint_max=1))

        assert client.get("/v1/me").status_code == 403
        assert client.get("/v1/me", headers={"X-API-Key": "wrong"}).status_code == 403
        assert client.get("/v1/me", headers=API_KEY).status_code == 200


class TestToggles:
    def test_global_disable_turns_off_both_scopes(self, make_app) -> None:
        client = TestClient(make_app(disabled=True, ip_max=1, fingerprint_max=1))

        for _ in range(3):
            assert client.get("/v1/me", headers=API_KEY).status_code == 200
        assert metrics.get_decision_counts() == {}

    def test_ip_scope_can_be_disabled_alone(self, make_app) -> None:
        client = TestClient(make_app(ip_enabled=False, ip_max=1, fingerprint_max=1))

        assert client.get("/v1/me", headers=API_KEY).status_code == 200
        assert client.get("/v1/ping").status_code == 200
        assert client.get("/v1/me", headers=API_KEY).status_code == 429

    def test_fingerprint_scope_can_be_disabled_alone(self, make_app) -> None:
        client = TestClient(make_app(fingerprint_enabled=False, fingerprint_max=1))

        for _ in range(3):
            assert client.get("/v1/me", headers=API_KEY).status_code == 200


class TestStoreFaults:
    def test_fail_open_admits_when_store_is_down(self, make_app, sleep_recorder) -> None:
        client = TestClient(make_app(store=BrokenStore()))

        resp = client.get("/v1/me", headers=API_KEY)

        assert resp.status_code == 200
        counts = metrics.get_decision_counts()
        assert counts[("ip", "fault_open")] == 1
        assert counts[("fingerprint", "fault_open")] == 1
        assert sleep_recorder.delays == [0.2, 0.4, 0.2, 0.4]

    def test_fail_closed_ip_scope_returns_500(self, make_app) -> None:
        client = TestClient(make_app(store=BrokenStore(), fail_open=False))

        resp = client.get("/v1/ping")

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Rate limit check failed"}

    def test_fail_closed_fingerprint_scope_returns_500(self, make_app) -> None:
        client = TestClient(make_app(store=BrokenStore(), fail_open=False, ip_enabled=False))

        assert client.get("/v1/ping").status_code == 200
        resp = client.get("/v1/me", headers=API_KEY)

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Rate limit check failed"}


def test_invalid_limiter_config_fails_at_startup(make_app) -> None:
    with pytest.raises(ValidationError):
        make_app(ip_max=0)


def test_unvalidated_settings_are_rejected_by_limiter_config(clock) -> None:
    bad = RateLimitSettings.model_construct(**{**RateLimitSettings().model_dump(), "fingerprint_window_ms": 0})

    with pytest.raises(ConfigurationAppError) as exc_info:
        build_rate_limiters(InMemoryWindowStore(), bad, clock=clock.time)

    assert exc_info.value.code == "invalid_rate_limit_window"
