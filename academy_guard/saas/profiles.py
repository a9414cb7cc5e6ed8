"""Profile mutation rules shared by every endpoint that changes a profile.

Two rules hold on every path: a ``super_admin`` profile is immutable, and no
path can grant ``super_admin``.
"""

from __future__ import annotations

from typing import Any, Union

from academy_guard.core.exceptions import (
    ImmutableSuperAdminError,
    InvalidProfileUpdateError,
    ProfileNotFoundError,
    UnauthorizedError,
)
from academy_guard.core.interfaces import DirectoryStore
from academy_guard.core.logging import get_logger
from academy_guard.core.types import Profile, Role
from academy_guard.saas.context import SuperAdmin, TenantScoped, ViewAs

log = get_logger(__name__)

_PROFILE_MANAGERS = frozenset({Role.OWNER, Role.ADMIN})


def validate_profile_patch(existing: Profile, patch: dict[str, Any]) -> dict[str, Any]:
    """Return the column changes ``patch`` asks for, or raise.

    Unknown keys are ignored. Values equal to the current ones are dropped.
    """
    if existing.role == Role.SUPER_ADMIN:
        raise ImmutableSuperAdminError(
            "super_admin profiles cannot be modified",
            context={"profile_id": existing.profile_id},
        )

    changes: dict[str, Any] = {}

    if "role" in patch and patch["role"] is not None:
        try:
            role = Role(patch["role"])
        except ValueError:
            raise InvalidProfileUpdateError(
                "Unknown role", context={"role": str(patch["role"])},
            ) from None
        if role == Role.SUPER_ADMIN:
            raise InvalidProfileUpdateError("super_admin cannot be assigned")
        if role != existing.role:
            changes["role"] = role

    suspended = patch.get("is_suspended", patch.get("isSuspended"))
    if isinstance(suspended, bool) and suspended != existing.is_suspended:
        changes["is_suspended"] = suspended

    name = patch.get("name")
    if isinstance(name, str) and name.strip() and name.strip() != existing.name:
        changes["name"] = name.strip()

    return changes


class ProfileAdmin:
    """Apply validated profile patches on behalf of an authorized actor."""

    def __init__(self, directory: DirectoryStore) -> None:
        self._directory = directory

    async def update_profile(
        self,
        ctx: Union[TenantScoped, ViewAs, SuperAdmin],
        profile_id: str,
        patch: dict[str, Any],
    ) -> Profile:
        existing = await self._directory.get_profile(profile_id)

        if isinstance(ctx, SuperAdmin):
            if existing is None:
                raise ProfileNotFoundError("Profile not found")
        else:
            if ctx.profile.role not in _PROFILE_MANAGERS:
                raise UnauthorizedError("Only owners and admins can modify profiles")
            # Profiles of other tenants are indistinguishable from missing ones.
            if existing is None or existing.tenant_id != ctx.tenant_id:
                raise ProfileNotFoundError("Profile not found")

        changes = validate_profile_patch(existing, patch)
        if not changes:
            return existing

        updated = await self._directory.update_profile(profile_id, changes)
        log.info(
            "profile_updated",
            profile_id=profile_id,
            actor=(ctx.actor if isinstance(ctx, ViewAs) else ctx.profile).identity,
            fields=sorted(changes),
        )
        return updated
