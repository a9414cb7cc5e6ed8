"""Quota evaluator: plan-limit enforcement and downgrade violation scans.

Numeric semantics: a limit is either ``UNLIMITED`` (always admits) or a
non-negative integer ``L``; creation is admitted iff ``count < L`` and a
downgrade violation exists iff ``count > L``.

Race model: ``assert_within_plan_limits`` alone is a check, not a guard.
Creation endpoints go through ``create_within_limits`` which counts and
inserts inside one storage transaction holding a lock on the quota scope
(the academy row, or the owner's profile row for academies), so concurrent
creators of the same scope are serialized and cannot overshoot the limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from uuid_extensions import uuid7

from academy_guard.core.exceptions import (
    AcademyGuardError,
    InternalLookupError,
    ProfileNotFoundError,
)
from academy_guard.core.interfaces import DirectoryStore, ResourceStore
from academy_guard.core.logging import get_logger
from academy_guard.core.types import (
    ACADEMY_SCOPED_RESOURCES,
    Academy,
    AccessResult,
    CreateOutcome,
    Created,
    LimitReached,
    PlanLimitViolations,
    Profile,
    QuotaCheck,
    ResourceType,
    Violation,
    WithinLimits,
)
from academy_guard.saas.access import AccessVerifier
from academy_guard.saas.counter import ResourceCounter
from academy_guard.saas.events import EventBus, ResourceCreated
from academy_guard.saas.plans import Limit, Plan, PlanCatalog, is_unlimited, limit_to_json

log = get_logger(__name__)


@dataclass(frozen=True)
class RemainingLimits:
    """Usage snapshot for one resource in one academy."""

    resource: ResourceType
    current: int
    limit: Limit
    remaining: int | None  # None means unlimited
    plan: str
    upgrade_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource.value,
            "current": self.current,
            "limit": limit_to_json(self.limit),
            "remaining": self.remaining,
            "planCode": self.plan,
            "upgradeTo": self.upgrade_to,
        }


class QuotaEvaluator:
    """Compare resource counts against the paying identity's plan."""

    def __init__(
        self,
        catalog: PlanCatalog,
        directory: DirectoryStore,
        resources: ResourceStore,
        *,
        events: EventBus | None = None,
        default_plan_code: str | None = "free",
    ) -> None:
        self._catalog = catalog
        self._directory = directory
        self._resources = resources
        self._counter = ResourceCounter(resources)
        self._access = AccessVerifier(directory)
        self._events = events
        self._default_plan_code = default_plan_code or None

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog

    # ── Pure evaluation ──────────────────────────────────────────

    def evaluate(self, plan: Plan, resource: ResourceType, count: int) -> WithinLimits | LimitReached:
        limit = plan.limit(resource)
        if is_unlimited(limit) or count < limit:  # type: ignore[operator]
            return WithinLimits(resource=resource, plan=plan.code, current_count=count, limit=limit)
        return LimitReached(
            resource=resource,
            plan=plan.code,
            current_count=count,
            limit=limit,  # type: ignore[arg-type]
            upgrade_to=self._catalog.next_tier(plan.code),
        )

    # ── Plan resolution ──────────────────────────────────────────

    async def plan_for_identity(self, identity: str) -> Plan:
        """Active subscription -> plan, or the configured default plan."""
        try:
            subscription = await self._directory.get_active_subscription(identity)
        except AcademyGuardError:
            raise
        except Exception as exc:
            log.error("subscription_lookup_failed", error=str(exc))
            raise InternalLookupError("Subscription lookup failed") from exc

        if subscription is not None:
            return self._catalog.get(subscription.plan_code)

        if self._default_plan_code is None:
            raise InternalLookupError(
                "No active subscription", context={"identity": identity},
            )
        return self._catalog.get(self._default_plan_code)

    async def _owner_of(self, academy: Academy) -> Profile:
        if not academy.owner_profile_id:
            raise InternalLookupError(
                "Academy has no owner", context={"academy_id": academy.academy_id},
            )
        owner = await self._directory.get_profile(academy.owner_profile_id)
        if owner is None:
            raise InternalLookupError(
                "Academy owner profile missing", context={"academy_id": academy.academy_id},
            )
        return owner

    async def _load_academy(self, academy_id: str) -> Academy:
        academy = await self._directory.get_academy(academy_id)
        if academy is None:
            # Access was verified a moment ago; the row vanished in between.
            raise InternalLookupError("Academy disappeared", context={"academy_id": academy_id})
        return academy

    async def _profile_for_identity(self, identity: str) -> Profile:
        profile = await self._directory.get_profile_by_identity(identity)
        if profile is None:
            raise ProfileNotFoundError("Profile not found", context={"identity": identity})
        return profile

    # ── Checks ───────────────────────────────────────────────────

    async def assert_within_plan_limits(
        self,
        tenant_id: str | None,
        academy_id: str,
        resource: ResourceType,
    ) -> QuotaCheck:
        """Check whether one more ``resource`` may be created in the academy.

        Returns a denied ``AccessResult`` when the academy is not visible to
        the tenant, ``LimitReached`` when the plan cap is hit, otherwise
        ``WithinLimits``.
        """
        access = await self._access.verify_academy_access(academy_id, tenant_id)
        if not access.allowed:
            return access

        academy = await self._load_academy(academy_id)
        owner = await self._owner_of(academy)
        plan = await self.plan_for_identity(owner.identity)

        if resource == ResourceType.ACADEMIES:
            count = await self._counter.count(owner.profile_id, resource)
        else:
            count = await self._counter.count(academy_id, resource, academy.tenant_id)

        outcome = self.evaluate(plan, resource, count)
        if isinstance(outcome, LimitReached):
            log.info(
                "plan_limit_reached",
                resource=resource.value,
                academy_id=academy_id,
                plan=plan.code.value,
                current=count,
                limit=outcome.limit,
            )
        return outcome

    async def assert_academy_limit(self, identity: str) -> WithinLimits | LimitReached:
        """Check whether ``identity`` may own one more academy."""
        profile = await self._profile_for_identity(identity)
        plan = await self.plan_for_identity(identity)
        count = await self._counter.count(profile.profile_id, ResourceType.ACADEMIES)
        return self.evaluate(plan, ResourceType.ACADEMIES, count)

    # ── Guarded creation ─────────────────────────────────────────

    async def create_within_limits(
        self,
        tenant_id: str | None,
        academy_id: str,
        resource: ResourceType,
        values: dict[str, Any] | None = None,
    ) -> CreateOutcome:
        """Count and insert atomically under the academy's quota lock.

        ``values`` are the extra columns of the new row; tenant and academy
        are always taken from the verified academy.
        """
        if resource == ResourceType.ACADEMIES:
            msg = "Use create_academy_within_limits for academies"
            raise ValueError(msg)

        access = await self._access.verify_academy_access(academy_id, tenant_id)
        if not access.allowed:
            return access

        academy = await self._load_academy(academy_id)
        owner = await self._owner_of(academy)
        plan = await self.plan_for_identity(owner.identity)

        row = dict(values or {})
        row.update(tenant_id=academy.tenant_id, academy_id=academy_id)

        outcome = await self._guarded_insert(plan, resource, academy_id, academy.tenant_id, row)
        if isinstance(outcome, Created) and self._events is not None:
            self._events.emit(
                ResourceCreated(
                    resource=resource,
                    resource_id=outcome.resource_id,
                    tenant_id=academy.tenant_id,
                    academy_id=academy_id,
                )
            )
        return outcome

    async def create_academy_within_limits(
        self,
        identity: str,
        values: dict[str, Any] | None = None,
    ) -> Created | LimitReached:
        """Create an academy owned by ``identity`` if its plan allows one more."""
        profile = await self._profile_for_identity(identity)
        plan = await self.plan_for_identity(identity)

        row = dict(values or {})
        row["owner_profile_id"] = profile.profile_id
        row["tenant_id"] = row.get("tenant_id") or profile.tenant_id or str(uuid7())

        outcome = await self._guarded_insert(
            plan, ResourceType.ACADEMIES, profile.profile_id, None, row,
        )
        if isinstance(outcome, Created) and self._events is not None:
            self._events.emit(
                ResourceCreated(
                    resource=ResourceType.ACADEMIES,
                    resource_id=outcome.resource_id,
                    tenant_id=row["tenant_id"],
                    academy_id=outcome.resource_id,
                )
            )
        return outcome

    async def _guarded_insert(
        self,
        plan: Plan,
        resource: ResourceType,
        scope_id: str,
        tenant_id: str | None,
        row: dict[str, Any],
    ) -> Created | LimitReached:
        try:
            async with self._resources.quota_scope(resource, scope_id) as txn:
                count = await ResourceCounter(txn).count(scope_id, resource, tenant_id)
                outcome = self.evaluate(plan, resource, count)
                if isinstance(outcome, LimitReached):
                    log.info(
                        "plan_limit_reached",
                        resource=resource.value,
                        scope_id=scope_id,
                        plan=plan.code.value,
                        current=count,
                        limit=outcome.limit,
                    )
                    return outcome
                resource_id = await txn.insert(resource, row)
        except AcademyGuardError:
            raise
        except Exception as exc:
            log.error("guarded_insert_failed", resource=resource.value, error=str(exc))
            raise InternalLookupError(
                "Resource insert failed", context={"resource": resource.value},
            ) from exc

        return Created(resource=resource, resource_id=resource_id)

    # ── Downgrade scan ───────────────────────────────────────────

    async def check_plan_limit_violations(
        self, identity: str, target_plan_code: str,
    ) -> PlanLimitViolations:
        """List every resource whose usage exceeds ``target_plan_code``'s limits."""
        target = self._catalog.get(target_plan_code)
        profile = await self._directory.get_profile_by_identity(identity)
        if profile is None:
            return PlanLimitViolations()

        owned = await self._directory.list_owned_academies(profile.profile_id)
        violations: list[Violation] = []

        academy_limit = target.limit(ResourceType.ACADEMIES)
        if not is_unlimited(academy_limit) and len(owned) > academy_limit:  # type: ignore[operator]
            violations.append(
                Violation(
                    resource=ResourceType.ACADEMIES,
                    current_count=len(owned),
                    limit=academy_limit,  # type: ignore[arg-type]
                )
            )

        for academy in owned:
            for resource in ACADEMY_SCOPED_RESOURCES:
                limit = target.limit(resource)
                if is_unlimited(limit):
                    continue
                count = await self._counter.count(academy.academy_id, resource, academy.tenant_id)
                if count > limit:  # type: ignore[operator]
                    violations.append(
                        Violation(
                            resource=resource,
                            current_count=count,
                            limit=limit,  # type: ignore[arg-type]
                            academy_id=academy.academy_id,
                            academy_name=academy.name,
                        )
                    )

        if violations:
            log.info(
                "plan_limit_violations_found",
                identity=identity,
                target_plan=target.code.value,
                count=len(violations),
            )
        return PlanLimitViolations(violations=tuple(violations))

    # ── Usage ────────────────────────────────────────────────────

    async def get_remaining_limits(
        self,
        tenant_id: str | None,
        academy_id: str,
        resource: ResourceType,
    ) -> RemainingLimits | AccessResult:
        access = await self._access.verify_academy_access(academy_id, tenant_id)
        if not access.allowed:
            return access

        academy = await self._load_academy(academy_id)
        owner = await self._owner_of(academy)
        plan = await self.plan_for_identity(owner.identity)

        if resource == ResourceType.ACADEMIES:
            current = await self._counter.count(owner.profile_id, resource)
        else:
            current = await self._counter.count(academy_id, resource, academy.tenant_id)

        limit = plan.limit(resource)
        if is_unlimited(limit):
            return RemainingLimits(
                resource=resource, current=current, limit=limit, remaining=None,
                plan=plan.code.value,
            )

        outcome = self.evaluate(plan, resource, current)
        upgrade_to = outcome.upgrade_to if isinstance(outcome, LimitReached) else None
        return RemainingLimits(
            resource=resource,
            current=current,
            limit=limit,
            remaining=max(0, limit - current),  # type: ignore[operator]
            plan=plan.code.value,
            upgrade_to=upgrade_to.value if upgrade_to else None,
        )


def limit_reached_body(outcome: LimitReached, catalog: PlanCatalog) -> dict[str, Any]:
    """402 response body with actionable upgrade guidance."""
    info = catalog.upgrade_info(outcome.plan)
    return {
        "error": outcome.code,
        "message": (
            f"Plan limit reached for {outcome.resource.value} "
            f"({outcome.current_count}/{outcome.limit})"
        ),
        "details": {
            "resource": outcome.resource.value,
            "limit": outcome.limit,
            "currentCount": outcome.current_count,
            "upgradeTo": outcome.upgrade_to.value if outcome.upgrade_to else None,
            "upgradeInfo": info.to_dict() if info else None,
        },
    }
