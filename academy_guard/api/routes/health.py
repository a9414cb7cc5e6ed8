"""Health check endpoint: no auth required."""

from __future__ import annotations

from fastapi import APIRouter

from academy_guard import __version__
from academy_guard.api.models.schemas import HealthResponse
from config.settings import get_settings

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="ok",
        version=__version__,
        environment=settings.guard_env,
    )
