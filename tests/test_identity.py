"""Tests for rate limit key resolution."""

from __future__ import annotations

from starlette.requests import Request

from gatekeeper.core.identity import resolve_client_ip, resolve_fingerprint


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestResolveClientIp:
    def test_prefers_first_forwarded_for_entry(self) -> None:
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.2"})

        assert resolve_client_ip(request) == "203.0.113.7"

    def test_falls_back_to_real_ip_header(self) -> None:
        assert resolve_client_ip(_request({"X-Real-IP": " 198.51.100.2 "})) == "198.51.100.2"

    def test_ignores_blank_forwarded_for(self) -> None:
        assert resolve_client_ip(_request({"X-Forwarded-For": " , 10.0.0.1"})) == "10.0.0.9"

    def test_uses_connection_address(self) -> None:
        assert resolve_client_ip(_request()) == "10.0.0.9"

    def test_unknown_when_nothing_is_available(self) -> None:
        assert resolve_client_ip(_request(client=None)) == "unknown"


class TestResolveFingerprint:
    def test_absent_before_auth(self) -> None:
        assert resolve_fingerprint(_request()) is None

    def test_returns_verified_fingerprint(self) -> None:
        request = _request()
        request.state.fingerprint_id = "fp-alpha"

        assert resolve_fingerprint(request) == "fp-alpha"

    def test_empty_fingerprint_counts_as_absent(self) -> None:
        request = _request()
        request.state.fingerprint_id = ""

        assert resolve_fingerprint(request) is None
