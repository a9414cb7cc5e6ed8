"""Shared domain types: profiles, academies, subscriptions and outcome values."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


# ── Enums ────────────────────────────────────────────────────────

class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    COACH = "coach"
    ATHLETE = "athlete"
    PARENT = "parent"
    SUPER_ADMIN = "super_admin"


class PlanCode(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class ResourceType(str, Enum):
    ATHLETES = "athletes"
    COACHES = "coaches"
    CLASSES = "classes"
    GROUPS = "groups"
    ACADEMIES = "academies"


# Resource types counted per academy; academies are counted per owner.
ACADEMY_SCOPED_RESOURCES: tuple[ResourceType, ...] = (
    ResourceType.ATHLETES,
    ResourceType.COACHES,
    ResourceType.CLASSES,
    ResourceType.GROUPS,
)


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class AccessReason(str, Enum):
    ACADEMY_ACCESS_DENIED = "ACADEMY_ACCESS_DENIED"
    ACADEMY_NOT_FOUND = "ACADEMY_NOT_FOUND"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"


# ── Records ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class Profile:
    """A person's profile; ``identity`` is the auth-provider user id."""

    profile_id: str
    identity: str
    role: Role
    tenant_id: str | None = None
    name: str | None = None
    is_suspended: bool = False
    active_academy_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


@dataclass(frozen=True)
class Membership:
    identity: str
    academy_id: str
    role: Role


@dataclass(frozen=True)
class Academy:
    academy_id: str
    tenant_id: str
    owner_profile_id: str | None
    name: str | None = None


@dataclass(frozen=True)
class Group:
    group_id: str
    tenant_id: str
    academy_id: str
    name: str | None = None


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    identity: str
    plan_code: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class AuditEntry:
    """One append-only audit log row."""

    actor_identity: str
    action: str
    target_identity: str | None = None
    target_resource: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ── Access Outcomes ──────────────────────────────────────────────

_ACCESS_STATUS: dict[AccessReason, int] = {
    AccessReason.ACADEMY_ACCESS_DENIED: 403,
    AccessReason.ACADEMY_NOT_FOUND: 404,
    AccessReason.GROUP_NOT_FOUND: 404,
}


@dataclass(frozen=True)
class AccessResult:
    allowed: bool
    reason: AccessReason | None = None

    @classmethod
    def allow(cls) -> AccessResult:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: AccessReason) -> AccessResult:
        return cls(allowed=False, reason=reason)

    @property
    def status_code(self) -> int:
        if self.reason is None:
            return 200
        return _ACCESS_STATUS[self.reason]

    def body(self) -> dict[str, str]:
        return {"error": self.reason.value if self.reason else ""}


# ── Quota Outcomes ───────────────────────────────────────────────

@dataclass(frozen=True)
class WithinLimits:
    resource: ResourceType
    plan: PlanCode
    current_count: int
    limit: Any  # int or plans.UNLIMITED


@dataclass(frozen=True)
class LimitReached:
    resource: ResourceType
    plan: PlanCode
    current_count: int
    limit: int
    upgrade_to: PlanCode | None

    code = "LIMIT_REACHED"


@dataclass(frozen=True)
class Created:
    resource: ResourceType
    resource_id: str


@dataclass(frozen=True)
class Violation:
    resource: ResourceType
    current_count: int
    limit: int
    academy_id: str | None = None
    academy_name: str | None = None

    @property
    def excess(self) -> int:
        return self.current_count - self.limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource.value,
            "academyId": self.academy_id,
            "academyName": self.academy_name,
            "currentCount": self.current_count,
            "limit": self.limit,
        }


@dataclass(frozen=True)
class PlanLimitViolations:
    violations: tuple[Violation, ...] = ()

    code = "PLAN_LIMIT_VIOLATIONS"

    @property
    def requires_action(self) -> bool:
        return len(self.violations) > 0

    def body(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "violations": [v.to_dict() for v in self.violations],
            "requiresAction": self.requires_action,
        }


@dataclass(frozen=True)
class PlanChangeApplied:
    identity: str
    old_plan: str | None
    new_plan: PlanCode
    forced_violations: tuple[Violation, ...] = ()


QuotaCheck = Union[WithinLimits, LimitReached, AccessResult]
CreateOutcome = Union[Created, LimitReached, AccessResult]
PlanChangeOutcome = Union[PlanChangeApplied, PlanLimitViolations]
