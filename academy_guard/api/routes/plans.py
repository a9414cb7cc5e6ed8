"""Plan endpoints: downgrade violation preview and plan changes."""

from __future__ import annotations

from typing import Any, Union

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from academy_guard.api.deps import get_context, get_services, get_tenant_context
from academy_guard.api.models.schemas import PlanChangeRequest
from academy_guard.core.exceptions import UnauthorizedError
from academy_guard.core.types import PlanChangeApplied, PlanCode, PlanLimitViolations, Role
from academy_guard.saas.context import RequestContext, TenantScoped, ViewAs, require_profile
from academy_guard.services import Services

router = APIRouter(tags=["plans"])

_PLAN_MANAGERS = frozenset({Role.OWNER, Role.ADMIN})


def plan_change_response(outcome: Union[PlanChangeApplied, PlanLimitViolations]) -> Any:
    """400 with the violation list, or the applied change."""
    if isinstance(outcome, PlanLimitViolations):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=outcome.body())
    return {
        "identity": outcome.identity,
        "oldPlan": outcome.old_plan,
        "newPlan": outcome.new_plan.value,
        "forcedViolations": [v.to_dict() for v in outcome.forced_violations],
    }


@router.get("/limits/violations")
async def get_violations(
    plan: PlanCode = Query(..., description="Target plan code"),
    ctx: RequestContext = Depends(get_context),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Preview what a move to ``plan`` would leave over its limits."""
    profile = require_profile(ctx)
    result = await services.quota.check_plan_limit_violations(profile.identity, plan.value)
    return {
        "violations": [v.to_dict() for v in result.violations],
        "requiresAction": result.requires_action,
    }


@router.post("/plan", response_model=None)
async def change_plan(
    body: PlanChangeRequest,
    ctx: Union[TenantScoped, ViewAs] = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> Any:
    """Change the caller's own subscription. Owners and admins only."""
    if ctx.profile.role not in _PLAN_MANAGERS:
        raise UnauthorizedError("Only owners and admins can change the plan")

    outcome = await services.plan_changer.change_plan(
        ctx.profile.identity,
        body.plan_code.value,
        force=body.force,
        actor=ctx.actor.identity if isinstance(ctx, ViewAs) else None,
    )
    return plan_change_response(outcome)
