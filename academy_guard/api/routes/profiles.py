"""Profile mutation endpoint for tenant owners and admins."""

from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends

from academy_guard.api.deps import get_services, get_tenant_context
from academy_guard.api.models.schemas import ProfileOut, ProfilePatch
from academy_guard.core.types import Profile
from academy_guard.saas.context import TenantScoped, ViewAs
from academy_guard.services import Services

router = APIRouter(prefix="/profiles", tags=["profiles"])


def profile_out(profile: Profile) -> ProfileOut:
    return ProfileOut(
        profile_id=profile.profile_id,
        identity=profile.identity,
        role=profile.role.value,
        tenant_id=profile.tenant_id,
        name=profile.name,
        is_suspended=profile.is_suspended,
    )


@router.patch("/{profile_id}", response_model=ProfileOut)
async def update_profile(
    profile_id: str,
    body: ProfilePatch,
    ctx: Union[TenantScoped, ViewAs] = Depends(get_tenant_context),
    services: Services = Depends(get_services),
) -> ProfileOut:
    updated = await services.profiles.update_profile(ctx, profile_id, body.to_patch())
    return profile_out(updated)
