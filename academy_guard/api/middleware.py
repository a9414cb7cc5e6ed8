"""JWT credential helpers for FastAPI."""

from __future__ import annotations

from fastapi import Cookie, Request

from academy_guard.saas.context import JWTManager
from config.settings import get_settings

_jwt_manager: JWTManager | None = None


def get_jwt() -> JWTManager:
    """Lazy-init singleton JWTManager."""
    global _jwt_manager  # noqa: PLW0603
    if _jwt_manager is None:
        settings = get_settings()
        _jwt_manager = JWTManager(
            secret=settings.guard_jwt_secret.get_secret_value(),
            expiry_hours=settings.guard_jwt_expiry_hours,
        )
    return _jwt_manager


async def get_credential(
    request: Request,
    academy_token: str | None = Cookie(default=None),
) -> str | None:
    """Extract the raw credential from the cookie or Authorization header.

    Verification happens in the tenant context resolver.
    """
    if academy_token:
        return academy_token

    # Fallback: Authorization header (for API clients)
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]

    return None
