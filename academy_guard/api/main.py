"""academy-guard FastAPI application: entry point for the API server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from academy_guard import __version__
from academy_guard.api.errors import install_error_handlers
from academy_guard.api.middleware import get_jwt
from academy_guard.core.logging import get_logger, setup_logging
from academy_guard.db.repositories import SqlAuditLog, SqlDirectoryStore, SqlResourceStore
from academy_guard.db.schema import close_engine, get_engine
from academy_guard.saas.events import RedisNotificationQueue
from academy_guard.saas.plans import load_catalog
from academy_guard.services import Services, build_services
from config.settings import get_settings

log = get_logger(__name__)


async def _build_production_services() -> tuple[Services, RedisNotificationQueue]:
    settings = get_settings()
    engine = await get_engine()
    notifications = RedisNotificationQueue(
        settings.redis_url.get_secret_value(), settings.notification_queue_key,
    )
    directory = SqlDirectoryStore(engine)
    services = build_services(
        catalog=load_catalog(settings.plan_catalog_path),
        directory=directory,
        resources=SqlResourceStore(engine),
        audit=SqlAuditLog(engine),
        notifications=notifications,
        jwt=get_jwt(),
        default_plan_code=settings.default_plan_code,
    )
    return services, notifications


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown lifecycle: wire the stores once, drain events on exit."""
    log.info("api_starting")
    queue: RedisNotificationQueue | None = None
    if app.state.services is None:
        app.state.services, queue = await _build_production_services()
    yield
    await app.state.services.events.drain()
    if queue is not None:
        await queue.close()
        await close_engine()
    log.info("api_shutdown")


def create_app(services: Services | None = None) -> FastAPI:
    """Build the FastAPI application.

    Passing ``services`` skips the database and Redis wiring (tests, local
    development against the in-memory store).
    """
    settings = get_settings()
    setup_logging(json_output=settings.guard_env == "prod")

    app = FastAPI(
        title="academy-guard API",
        description="Tenant isolation and plan-quota enforcement",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    from academy_guard.api.routes.academies import router as academies_router
    from academy_guard.api.routes.health import router as health_router
    from academy_guard.api.routes.plans import router as plans_router
    from academy_guard.api.routes.profiles import router as profiles_router
    from academy_guard.api.routes.super_admin import router as super_admin_router

    app.include_router(health_router, prefix="/api")
    app.include_router(academies_router, prefix="/api")
    app.include_router(plans_router, prefix="/api")
    app.include_router(profiles_router, prefix="/api")
    app.include_router(super_admin_router, prefix="/api")

    return app


app = create_app()
