"""Process-wide wiring of the engine's components."""

from __future__ import annotations

from dataclasses import dataclass

from academy_guard.core.interfaces import (
    AuditLogStore,
    DirectoryStore,
    NotificationDispatcher,
    ResourceStore,
)
from academy_guard.saas.access import AccessVerifier
from academy_guard.saas.context import JWTManager, TenantContextResolver
from academy_guard.saas.counter import ResourceCounter
from academy_guard.saas.events import EventBus, register_default_handlers
from academy_guard.saas.plan_change import PlanChanger
from academy_guard.saas.plans import PlanCatalog
from academy_guard.saas.profiles import ProfileAdmin
from academy_guard.saas.quota import QuotaEvaluator
from academy_guard.saas.super_admin import SuperAdminGate


@dataclass
class Services:
    catalog: PlanCatalog
    directory: DirectoryStore
    resources: ResourceStore
    audit: AuditLogStore
    notifications: NotificationDispatcher
    events: EventBus
    jwt: JWTManager
    resolver: TenantContextResolver
    access: AccessVerifier
    counter: ResourceCounter
    quota: QuotaEvaluator
    plan_changer: PlanChanger
    profiles: ProfileAdmin
    gate: SuperAdminGate


def build_services(
    *,
    catalog: PlanCatalog,
    directory: DirectoryStore,
    resources: ResourceStore,
    audit: AuditLogStore,
    notifications: NotificationDispatcher,
    jwt: JWTManager,
    default_plan_code: str | None = "free",
) -> Services:
    """Assemble the engine around one catalog, built once at startup."""
    events = EventBus()
    register_default_handlers(events, notifications)

    quota = QuotaEvaluator(
        catalog,
        directory,
        resources,
        events=events,
        default_plan_code=default_plan_code,
    )
    plan_changer = PlanChanger(directory, quota, events)

    return Services(
        catalog=catalog,
        directory=directory,
        resources=resources,
        audit=audit,
        notifications=notifications,
        events=events,
        jwt=jwt,
        resolver=TenantContextResolver(directory, jwt),
        access=AccessVerifier(directory),
        counter=ResourceCounter(resources),
        quota=quota,
        plan_changer=plan_changer,
        profiles=ProfileAdmin(directory),
        gate=SuperAdminGate(directory, audit, plan_changer),
    )
