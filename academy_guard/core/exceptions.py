"""Exception hierarchy for academy-guard.

Only genuinely exceptional conditions are raised. Expected business outcomes
(limit reached, access denied, downgrade violations) are returned as values
from ``academy_guard.core.types``.
"""

from __future__ import annotations

from typing import Any


class AcademyGuardError(Exception):
    """Base exception for all academy-guard errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ── Identity & Context ───────────────────────────────────────────

class UnauthenticatedError(AcademyGuardError):
    """No valid credential resolves to a Profile."""

    code = "UNAUTHENTICATED"
    status_code = 401


class UnauthorizedError(AcademyGuardError):
    """Caller is authenticated but its role is insufficient."""

    code = "UNAUTHORIZED"
    status_code = 403


class AccountSuspendedError(UnauthorizedError):
    """Suspended identities are denied every tenant-scoped operation."""

    code = "ACCOUNT_SUSPENDED"


class TenantRequiredError(AcademyGuardError):
    """Operation needs a tenant and none could be resolved."""

    code = "TENANT_REQUIRED"
    status_code = 400


# ── Profile Mutation ─────────────────────────────────────────────

class ProfileNotFoundError(AcademyGuardError):
    code = "PROFILE_NOT_FOUND"
    status_code = 404


class ImmutableSuperAdminError(AcademyGuardError):
    """A super_admin profile cannot be changed through any mutation path."""

    code = "IMMUTABLE_SUPER_ADMIN"
    status_code = 400


class InvalidProfileUpdateError(AcademyGuardError):
    code = "INVALID_PROFILE_UPDATE"
    status_code = 400


# ── Lookups & Storage ────────────────────────────────────────────

class InternalLookupError(AcademyGuardError):
    """Storage failure or a row that must exist is missing."""

    code = "INTERNAL_ERROR"
    status_code = 500


class PlanNotFoundError(InternalLookupError):
    """Plan code is not present in the catalog."""
