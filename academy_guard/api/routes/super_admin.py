"""Super-admin endpoints: cross-tenant reads, user management and "view as".

Every route here goes through ``SuperAdminGate``, which appends the action to
the audit log before running it.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from academy_guard.api.deps import get_services, get_super_admin
from academy_guard.api.models.schemas import (
    AuditEntryOut,
    SuperAdminAcademyOut,
    SuperAdminUserPatch,
    ViewAsOut,
)
from academy_guard.api.routes.plans import plan_change_response
from academy_guard.api.routes.profiles import profile_out
from academy_guard.core.exceptions import InternalLookupError
from academy_guard.core.types import ACADEMY_SCOPED_RESOURCES
from academy_guard.saas.context import SuperAdmin
from academy_guard.services import Services

router = APIRouter(prefix="/super-admin", tags=["super-admin"])


@router.patch("/users/{profile_id}", response_model=None)
async def update_user(
    profile_id: str,
    body: SuperAdminUserPatch,
    admin: SuperAdmin = Depends(get_super_admin),
    services: Services = Depends(get_services),
) -> Any:
    """Update role, suspension or name, and optionally the user's plan.

    A super_admin target is refused with IMMUTABLE_SUPER_ADMIN whatever else
    the payload carries. A blocked plan change leaves the profile untouched.
    """
    profile, outcome = await services.gate.update_user(
        admin,
        profile_id,
        body.to_patch(),
        plan_code=body.plan_code.value if body.plan_code is not None else None,
        force=body.force,
    )
    if outcome is None:
        return {"profile": profile_out(profile).model_dump()}

    response = plan_change_response(outcome)
    if isinstance(response, JSONResponse):
        return response
    return {"profile": profile_out(profile).model_dump(), "plan": response}


@router.post("/view-as/{profile_id}", response_model=ViewAsOut)
async def start_view_as(
    profile_id: str,
    admin: SuperAdmin = Depends(get_super_admin),
    services: Services = Depends(get_services),
) -> ViewAsOut:
    """Validate and audit a view-as session.

    Subsequent requests carry ``X-View-As: <profile_id>``.
    """
    view = await services.gate.view_as(admin, profile_id)
    return ViewAsOut(
        actor=view.actor.identity,
        profile=profile_out(view.profile),
        tenant_id=view.tenant_id,
    )


@router.get("/academies/{academy_id}", response_model=None)
async def get_academy(
    academy_id: str,
    admin: SuperAdmin = Depends(get_super_admin),
    services: Services = Depends(get_services),
) -> Any:
    access = await services.gate.verify_academy_access(admin, academy_id)
    if not access.allowed:
        return JSONResponse(status_code=access.status_code, content=access.body())

    academy = await services.directory.get_academy(academy_id)
    if academy is None:
        raise InternalLookupError("Academy disappeared", context={"academy_id": academy_id})
    owner = (
        await services.directory.get_profile(academy.owner_profile_id)
        if academy.owner_profile_id
        else None
    )
    plan = await services.quota.plan_for_identity(owner.identity) if owner else None
    usage = await services.counter.count_many(
        academy_id, list(ACADEMY_SCOPED_RESOURCES), academy.tenant_id,
    )
    return SuperAdminAcademyOut(
        academy_id=academy.academy_id,
        tenant_id=academy.tenant_id,
        name=academy.name,
        owner_profile_id=academy.owner_profile_id,
        plan=plan.code.value if plan else "",
        usage={r.value: n for r, n in usage.items()},
    )


@router.get("/audit-logs", response_model=list[AuditEntryOut])
async def list_audit_logs(
    limit: int = Query(default=100, ge=1, le=1000),
    actor: str | None = Query(default=None),
    admin: SuperAdmin = Depends(get_super_admin),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    entries = await services.gate.recent_actions(admin, limit=limit, actor_identity=actor)
    return [
        {
            "actor_identity": e.actor_identity,
            "action": e.action,
            "target_identity": e.target_identity,
            "target_resource": e.target_resource,
            "meta": e.meta,
            "timestamp": e.timestamp,
        }
        for e in entries
    ]
