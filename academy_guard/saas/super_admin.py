"""Super-admin escalation gate: tenant bypass and "view as" with mandatory audit.

Every action performed through the gate is appended to the audit log before
it runs. If the audit append fails the action does not run.
"""

from __future__ import annotations

from typing import Any, Union

from academy_guard.core.exceptions import (
    InternalLookupError,
    ProfileNotFoundError,
    UnauthorizedError,
)
from academy_guard.core.interfaces import AuditLogStore, DirectoryStore
from academy_guard.core.logging import get_logger
from academy_guard.core.types import (
    AccessResult,
    AuditEntry,
    PlanChangeOutcome,
    PlanLimitViolations,
    Profile,
    Role,
)
from academy_guard.saas.access import AccessVerifier
from academy_guard.saas.context import RequestContext, SuperAdmin, ViewAs
from academy_guard.saas.plan_change import PlanChanger
from academy_guard.saas.profiles import ProfileAdmin, validate_profile_patch

log = get_logger(__name__)


class SuperAdminGate:
    """Alternate context path for the platform-operator role."""

    def __init__(
        self,
        directory: DirectoryStore,
        audit: AuditLogStore,
        plan_changer: PlanChanger,
    ) -> None:
        self._directory = directory
        self._audit = audit
        self._access = AccessVerifier(directory)
        self._profiles = ProfileAdmin(directory)
        self._plan_changer = plan_changer

    # ── Admission ────────────────────────────────────────────────

    @staticmethod
    def admit(ctx: RequestContext) -> SuperAdmin:
        """Return ``ctx`` as a ``SuperAdmin`` or raise ``UnauthorizedError``."""
        profile: Profile | None = getattr(ctx, "profile", None)
        if isinstance(ctx, ViewAs):
            profile = ctx.actor
        if profile is None or profile.role != Role.SUPER_ADMIN or profile.is_suspended:
            log.warning(
                "super_admin_required",
                profile_id=profile.profile_id if profile else None,
            )
            raise UnauthorizedError("Super admin required")
        if isinstance(ctx, SuperAdmin):
            return ctx
        return SuperAdmin(profile=profile)

    # ── Audit ────────────────────────────────────────────────────

    async def record(
        self,
        ctx: Union[SuperAdmin, ViewAs],
        action: str,
        *,
        target_identity: str | None = None,
        target_resource: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        actor = ctx.actor if isinstance(ctx, ViewAs) else ctx.profile
        if isinstance(ctx, ViewAs) and target_identity is None:
            target_identity = ctx.profile.identity
        entry = AuditEntry(
            actor_identity=actor.identity,
            action=action,
            target_identity=target_identity,
            target_resource=target_resource,
            meta=meta or {},
        )
        try:
            await self._audit.append(entry)
        except Exception as exc:
            log.error("audit_append_failed", action=action, error=str(exc))
            raise InternalLookupError("Audit log unavailable") from exc
        log.info(
            "super_admin_action",
            actor=actor.identity,
            action=action,
            target_identity=target_identity,
            target_resource=target_resource,
        )

    async def recent_actions(
        self, ctx: RequestContext, limit: int = 100, actor_identity: str | None = None,
    ) -> list[AuditEntry]:
        self.admit(ctx)
        return await self._audit.recent(limit=limit, actor_identity=actor_identity)

    # ── View as ──────────────────────────────────────────────────

    async def view_as(self, ctx: RequestContext, target_profile_id: str) -> ViewAs:
        """Build a context that reads and writes as the target profile."""
        admin = self.admit(ctx)
        target = await self._directory.get_profile(target_profile_id)
        if target is None:
            raise ProfileNotFoundError("Profile not found")
        if target.role == Role.SUPER_ADMIN:
            raise UnauthorizedError("Cannot view as another super admin")

        await self.record(
            admin,
            "view_as",
            target_identity=target.identity,
            target_resource=f"profile:{target.profile_id}",
        )
        return ViewAs(actor=admin.profile, profile=target, tenant_id=target.tenant_id)

    # ── Tenant-bypassing access ──────────────────────────────────

    async def verify_academy_access(self, ctx: RequestContext, academy_id: str) -> AccessResult:
        admin = self.admit(ctx)
        await self.record(admin, "academy_access", target_resource=f"academy:{academy_id}")
        return await self._access.verify_academy_access(academy_id, None, bypass_tenant=True)

    async def verify_group_access(
        self, ctx: RequestContext, group_id: str, academy_id: str | None = None,
    ) -> AccessResult:
        admin = self.admit(ctx)
        await self.record(admin, "group_access", target_resource=f"group:{group_id}")
        return await self._access.verify_group_access(
            group_id, None, academy_id, bypass_tenant=True,
        )

    # ── Mutations ────────────────────────────────────────────────

    async def update_profile(
        self, ctx: RequestContext, profile_id: str, patch: dict[str, Any],
    ) -> Profile:
        admin = self.admit(ctx)
        existing = await self._directory.get_profile(profile_id)
        if existing is None:
            raise ProfileNotFoundError("Profile not found")

        await self.record(
            admin,
            "update_profile",
            target_identity=existing.identity,
            target_resource=f"profile:{profile_id}",
            meta={"fields": sorted(patch)},
        )
        return await self._profiles.update_profile(admin, profile_id, patch)

    async def change_plan(
        self,
        ctx: RequestContext,
        profile_id: str,
        plan_code: str,
        *,
        force: bool = False,
    ) -> PlanChangeOutcome:
        admin = self.admit(ctx)
        target = await self._directory.get_profile(profile_id)
        if target is None:
            raise ProfileNotFoundError("Profile not found")

        await self.record(
            admin,
            "change_plan",
            target_identity=target.identity,
            target_resource=f"profile:{profile_id}",
            meta={"plan": plan_code, "force": force},
        )
        return await self._plan_changer.change_plan(
            target.identity, plan_code, force=force, actor=admin.profile.identity,
        )

    async def update_user(
        self,
        ctx: RequestContext,
        profile_id: str,
        patch: dict[str, Any],
        *,
        plan_code: str | None = None,
        force: bool = False,
    ) -> tuple[Profile, PlanChangeOutcome | None]:
        """Apply a profile patch together with an optional plan change.

        Profile rules are checked before anything else. When the plan change
        is blocked by violations nothing is written and the target profile is
        returned as it was.
        """
        admin = self.admit(ctx)
        target = await self._directory.get_profile(profile_id)
        if target is None:
            raise ProfileNotFoundError("Profile not found")
        validate_profile_patch(target, patch)

        await self.record(
            admin,
            "update_user",
            target_identity=target.identity,
            target_resource=f"profile:{profile_id}",
            meta={"fields": sorted(patch), "plan": plan_code, "force": force},
        )

        outcome: PlanChangeOutcome | None = None
        if plan_code is not None:
            outcome = await self._plan_changer.change_plan(
                target.identity, plan_code, force=force, actor=admin.profile.identity,
            )
            if isinstance(outcome, PlanLimitViolations):
                return target, outcome

        profile = await self._profiles.update_profile(admin, profile_id, patch)
        return profile, outcome
