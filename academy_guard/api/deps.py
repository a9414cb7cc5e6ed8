"""FastAPI dependency injection: services and request contexts for routes."""

from __future__ import annotations

from typing import Union

from fastapi import Depends, Request

from academy_guard.api.middleware import get_credential
from academy_guard.saas.context import (
    RequestContext,
    SuperAdmin,
    TenantScoped,
    ViewAs,
    require_tenant,
)
from academy_guard.services import Services

VIEW_AS_HEADER = "x-view-as"


def get_services(request: Request) -> Services:
    """Services built once at startup and stored on the app."""
    return request.app.state.services  # type: ignore[no-any-return]


async def get_context(
    request: Request,
    credential: str | None = Depends(get_credential),
    services: Services = Depends(get_services),
) -> RequestContext:
    """Resolve the caller; a super-admin may add ``X-View-As: <profile_id>``.

    Each request made in view-as mode is appended to the audit log.
    """
    academy_id = request.path_params.get("academy_id")
    ctx: RequestContext = await services.resolver.resolve(credential, academy_id)

    target_profile_id = request.headers.get(VIEW_AS_HEADER)
    if target_profile_id:
        view = await services.gate.view_as(ctx, target_profile_id)
        await services.gate.record(
            view,
            f"{request.method} {request.url.path}",
            target_resource=f"academy:{academy_id}" if academy_id else None,
        )
        return view

    return ctx


async def get_tenant_context(
    ctx: RequestContext = Depends(get_context),
) -> Union[TenantScoped, ViewAs]:
    """Mandatory tenant filter for tenant-scoped endpoints."""
    return require_tenant(ctx)


async def get_super_admin(
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> SuperAdmin:
    return services.gate.admit(ctx)
