"""Pydantic V2 request/response schemas for the academy-guard API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from academy_guard.core.types import PlanCode


# ── Academies & Resources ────────────────────────────────────────

class AcademyCreate(BaseModel):
    """Request body for creating an academy."""

    name: str = Field(..., min_length=1, max_length=200)


class ResourceCreate(BaseModel):
    """Minimal row for a quota-bound resource (athlete, coach, class, group)."""

    name: str = Field(..., min_length=1, max_length=200)


class CreatedOut(BaseModel):
    id: str
    resource: str


class AcademyOut(BaseModel):
    academy_id: str
    tenant_id: str
    name: str | None = None
    owner_profile_id: str | None = None


class SuperAdminAcademyOut(AcademyOut):
    plan: str
    usage: dict[str, int] = Field(default_factory=dict)


# ── Plans ────────────────────────────────────────────────────────

class PlanChangeRequest(BaseModel):
    plan_code: PlanCode = Field(..., alias="planCode")
    force: bool = False

    model_config = ConfigDict(populate_by_name=True)


# ── Profiles ─────────────────────────────────────────────────────

class ProfilePatch(BaseModel):
    """Accepted profile fields. Validation of values happens in the engine."""

    role: str | None = None
    is_suspended: bool | None = Field(default=None, alias="isSuspended")
    name: str | None = None

    model_config = ConfigDict(populate_by_name=True)

    def to_patch(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SuperAdminUserPatch(ProfilePatch):
    plan_code: PlanCode | None = Field(default=None, alias="planCode")
    force: bool = False

    def to_patch(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"plan_code", "force"})


class ProfileOut(BaseModel):
    profile_id: str
    identity: str
    role: str
    tenant_id: str | None = None
    name: str | None = None
    is_suspended: bool = False


class ViewAsOut(BaseModel):
    actor: str
    profile: ProfileOut
    tenant_id: str | None = None


# ── Audit ────────────────────────────────────────────────────────

class AuditEntryOut(BaseModel):
    actor_identity: str
    action: str
    target_identity: str | None = None
    target_resource: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


# ── Generic ──────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "dev"


class ErrorResponse(BaseModel):
    error: str
