from __future__ import annotations

from gatekeeper.api.routes.health import router as health_router
from gatekeeper.api.routes.session import router as session_router

__all__ = ["health_router", "session_router"]
