"""Multi-tenant enforcement layer: plan catalog, quotas, access and super-admin gate."""

from academy_guard.saas.access import AccessVerifier
from academy_guard.saas.context import (
    JWTManager,
    RequestContext,
    TenantContextResolver,
    require_tenant,
)
from academy_guard.saas.plans import UNLIMITED, PlanCatalog, load_catalog
from academy_guard.saas.quota import QuotaEvaluator
from academy_guard.saas.super_admin import SuperAdminGate

__all__ = [
    "AccessVerifier",
    "JWTManager",
    "RequestContext",
    "TenantContextResolver",
    "require_tenant",
    "UNLIMITED",
    "PlanCatalog",
    "load_catalog",
    "QuotaEvaluator",
    "SuperAdminGate",
]
