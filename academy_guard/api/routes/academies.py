"""Academy endpoints: ownership checks and plan-gated resource creation."""

from __future__ import annotations

from typing import Any, Union

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from academy_guard.api.deps import get_context, get_services, get_tenant_context
from academy_guard.api.models.schemas import (
    AcademyCreate,
    AcademyOut,
    CreatedOut,
    ResourceCreate,
)
from academy_guard.core.exceptions import InternalLookupError
from academy_guard.core.types import (
    ACADEMY_SCOPED_RESOURCES,
    AccessResult,
    LimitReached,
    ResourceType,
)
from academy_guard.saas.context import RequestContext, TenantScoped, ViewAs, require_profile
from academy_guard.saas.quota import limit_reached_body
from academy_guard.services import Services

router = APIRouter(prefix="/academies", tags=["academies"])


def _denied(result: AccessResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body())


def _payment_required(outcome: LimitReached, services: Services) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content=limit_reached_body(outcome, services.catalog),
    )


def _scoped_resource(resource: str) -> ResourceType | None:
    try:
        resource_type = ResourceType(resource)
    except ValueError:
        return None
    return resource_type if resource_type in ACADEMY_SCOPED_RESOURCES else None


@router.post("", status_code=status.HTTP_201_CREATED, response_model=None)
async def create_academy(
    body: AcademyCreate,
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> Union[CreatedOut, JSONResponse]:
    """Create an academy owned by the caller if their plan allows one more."""
    profile = require_profile(ctx)
    outcome = await services.quota.create_academy_within_limits(
        profile.identity, {"name": body.name},
    )
    if isinstance(outcome, LimitReached):
        return _payment_required(outcome, services)
    return CreatedOut(id=outcome.resource_id, resource=outcome.resource.value)


@router.get("/{academy_id}", response_model=None)
async def get_academy(
    academy_id: str,
    ctx: Union[TenantScoped, ViewAs] = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> Union[AcademyOut, JSONResponse]:
    access = await services.access.verify_academy_access(academy_id, ctx.tenant_id)
    if not access.allowed:
        return _denied(access)
    academy = await services.directory.get_academy(academy_id)
    if academy is None:
        raise InternalLookupError("Academy disappeared", context={"academy_id": academy_id})
    return AcademyOut(
        academy_id=academy.academy_id,
        tenant_id=academy.tenant_id,
        name=academy.name,
        owner_profile_id=academy.owner_profile_id,
    )


@router.post("/{academy_id}/{resource}", status_code=status.HTTP_201_CREATED, response_model=None)
async def create_resource(
    academy_id: str,
    resource: str,
    body: ResourceCreate,
    ctx: Union[TenantScoped, ViewAs] = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> Union[CreatedOut, JSONResponse]:
    """Create an athlete, coach, class or group.

    Order is fixed: ownership check, then plan quota, then the insert.
    """
    resource_type = _scoped_resource(resource)
    if resource_type is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "UNKNOWN_RESOURCE"})

    outcome = await services.quota.create_within_limits(
        ctx.tenant_id, academy_id, resource_type, {"name": body.name},
    )
    if isinstance(outcome, AccessResult):
        return _denied(outcome)
    if isinstance(outcome, LimitReached):
        return _payment_required(outcome, services)
    return CreatedOut(id=outcome.resource_id, resource=outcome.resource.value)


@router.get("/{academy_id}/limits/{resource}", response_model=None)
async def get_limits(
    academy_id: str,
    resource: str,
    ctx: Union[TenantScoped, ViewAs] = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> Union[dict[str, Any], JSONResponse]:
    """Current usage, limit and remaining headroom for one resource."""
    try:
        resource_type = ResourceType(resource)
    except ValueError:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "UNKNOWN_RESOURCE"})

    remaining = await services.quota.get_remaining_limits(ctx.tenant_id, academy_id, resource_type)
    if isinstance(remaining, AccessResult):
        return _denied(remaining)
    return remaining.to_dict()


@router.get("/{academy_id}/groups/{group_id}", response_model=None)
async def get_group(
    academy_id: str,
    group_id: str,
    ctx: Union[TenantScoped, ViewAs] = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> Union[dict[str, Any], JSONResponse]:
    access = await services.access.verify_group_access(group_id, ctx.tenant_id, academy_id)
    if not access.allowed:
        return _denied(access)
    group = await services.directory.get_group(group_id)
    if group is None:
        raise InternalLookupError("Group disappeared", context={"group_id": group_id})
    return {"group_id": group.group_id, "academy_id": group.academy_id, "name": group.name}
