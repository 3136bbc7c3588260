"""OpenAPI customization utilities.

Enriches the generated schema with:
- the API Key security scheme (``X-API-Key``), exempting public paths
- tags metadata
- the shared 429 / 500 rate limit responses on every operation

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

PUBLIC_PATHS = ("/health", "/metrics", "/v1/ping")

RATE_LIMIT_RESPONSES: Dict[str, Any] = {
    "429": {
        "description": "Too many requests for this client address or fingerprint.",
        "headers": {"Retry-After": {"schema": {"type": "integer"}}},
        "content": {
            "application/json": {
                "example": {
                    "success": False,
                    "error": "Too many requests, please try again later",
                    "retryAfter": 42,
                }
            }
        },
    },
    "500": {
        "description": "Rate limit store unavailable and fail-open disabled.",
        "content": {
            "application/json": {
                "example": {"success": False, "error": "Rate limit check failed"}
            }
        },
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add security and rate limit docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "API key bound to the caller's fingerprint.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in (
            {"name": "Session", "description": "Rate limited example endpoints."},
            {"name": "Health", "description": "Liveness, store status and metrics."},
        ):
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path in PUBLIC_PATHS:
                    method_obj["security"] = []
                responses = method_obj.setdefault("responses", {})
                for code, response in RATE_LIMIT_RESPONSES.items():
                    responses.setdefault(code, response)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
