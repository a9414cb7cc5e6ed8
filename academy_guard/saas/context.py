"""Tenant context resolution: credential -> profile -> request-scoped context.

The context is a tagged union. Handlers declare the shape they need
(``TenantScoped``, ``SuperAdmin``...) and obtain it through ``require_tenant``
or the super-admin gate, never by null-checking fields of a loose dict.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Union

from academy_guard.core.exceptions import (
    AccountSuspendedError,
    InternalLookupError,
    TenantRequiredError,
    UnauthenticatedError,
)
from academy_guard.core.interfaces import DirectoryStore
from academy_guard.core.logging import get_logger
from academy_guard.core.types import Profile, Role

log = get_logger(__name__)


# ── Context variants ─────────────────────────────────────────────

@dataclass(frozen=True)
class Anonymous:
    kind = "anonymous"


@dataclass(frozen=True)
class Authenticated:
    """Known profile without a resolvable tenant."""

    profile: Profile
    kind = "authenticated"


@dataclass(frozen=True)
class TenantScoped:
    profile: Profile
    tenant_id: str
    kind = "tenant"


@dataclass(frozen=True)
class SuperAdmin:
    profile: Profile
    tenant_id: str | None = None
    kind = "super_admin"


@dataclass(frozen=True)
class ViewAs:
    """A super-admin operating against a target profile's data."""

    actor: Profile
    profile: Profile
    tenant_id: str | None
    kind = "view_as"


RequestContext = Union[Anonymous, Authenticated, TenantScoped, SuperAdmin, ViewAs]


def require_profile(ctx: RequestContext) -> Profile:
    """Authenticated, non-suspended profile; no tenant needed (e.g. academy creation)."""
    if isinstance(ctx, Anonymous):
        raise UnauthenticatedError("Not authenticated")
    if ctx.profile.is_suspended or (isinstance(ctx, ViewAs) and ctx.actor.is_suspended):
        raise AccountSuspendedError(
            "Account suspended", context={"profile_id": ctx.profile.profile_id},
        )
    return ctx.profile


def require_tenant(ctx: RequestContext) -> Union[TenantScoped, ViewAs]:
    """Narrow ``ctx`` to a tenant-scoped context or raise.

    Suspended profiles are refused regardless of role, including owners,
    admins and super-admins.
    """
    if isinstance(ctx, Anonymous):
        raise UnauthenticatedError("Not authenticated")

    if ctx.profile.is_suspended:
        log.warning("suspended_profile_refused", profile_id=ctx.profile.profile_id)
        raise AccountSuspendedError(
            "Account suspended", context={"profile_id": ctx.profile.profile_id},
        )

    if isinstance(ctx, ViewAs):
        if ctx.actor.is_suspended:
            raise AccountSuspendedError("Account suspended")
        if not ctx.tenant_id:
            raise TenantRequiredError("Target profile has no tenant")
        return ctx

    if isinstance(ctx, TenantScoped):
        return ctx

    if isinstance(ctx, SuperAdmin) and ctx.tenant_id:
        return TenantScoped(profile=ctx.profile, tenant_id=ctx.tenant_id)

    raise TenantRequiredError("Tenant required")


# ── Credentials ──────────────────────────────────────────────────

_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


class JWTManager:
    """HS256 session credentials whose ``sub`` is the auth-provider identity."""

    def __init__(self, secret: str, expiry_hours: int = 24) -> None:
        self._secret = secret.encode()
        self._ttl = expiry_hours * 3600

    def create_token(self, identity: str) -> str:
        now = int(time.time())
        claims = {"sub": identity, "iat": now, "exp": now + self._ttl}
        signing_input = ".".join(
            _b64url_encode(json.dumps(part, separators=(",", ":")).encode())
            for part in (_HEADER, claims)
        )
        return f"{signing_input}.{self._sign(signing_input)}"

    def identity_from(self, token: str) -> str | None:
        """Identity carried by a valid, unexpired credential, else None."""
        signing_input, _, sig = token.rpartition(".")
        if signing_input.count(".") != 1:
            return None
        if not hmac.compare_digest(sig.encode(), self._sign(signing_input).encode()):
            log.warning("credential_bad_signature")
            return None

        header_b64, claims_b64 = signing_input.split(".")
        try:
            header = json.loads(_b64url_decode(header_b64))
            claims = json.loads(_b64url_decode(claims_b64))
        except ValueError:
            log.warning("credential_undecodable")
            return None
        if header != _HEADER or not isinstance(claims, dict):
            return None

        exp = claims.get("exp")
        if not isinstance(exp, int) or time.time() > exp:
            log.debug("credential_expired", sub=claims.get("sub"))
            return None

        identity = claims.get("sub")
        return identity if isinstance(identity, str) and identity else None

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        return _b64url_encode(digest)


# ── Resolver ─────────────────────────────────────────────────────

class TenantContextResolver:
    """Authenticate a request and build its context. Pure read."""

    def __init__(self, directory: DirectoryStore, jwt: JWTManager) -> None:
        self._directory = directory
        self._jwt = jwt

    async def resolve(
        self, credential: str | None, academy_id: str | None = None,
    ) -> Union[Authenticated, TenantScoped, SuperAdmin]:
        """Resolve the caller. Missing tenant is not an error here."""
        if not credential:
            raise UnauthenticatedError("Not authenticated")

        identity = self._jwt.identity_from(credential)
        if identity is None:
            raise UnauthenticatedError("Invalid or expired token")

        try:
            profile = await self._directory.get_profile_by_identity(identity)
        except Exception as exc:
            log.error("profile_lookup_failed", error=str(exc))
            raise InternalLookupError("Profile lookup failed") from exc

        if profile is None:
            log.warning("auth_failed_no_profile")
            raise UnauthenticatedError("No profile for credential")

        tenant_id = await self._resolve_tenant(profile, academy_id)

        if profile.role == Role.SUPER_ADMIN:
            return SuperAdmin(profile=profile, tenant_id=tenant_id)
        if tenant_id:
            return TenantScoped(profile=profile, tenant_id=tenant_id)
        return Authenticated(profile=profile)

    async def resolve_optional(
        self, credential: str | None, academy_id: str | None = None,
    ) -> RequestContext:
        if not credential:
            return Anonymous()
        return await self.resolve(credential, academy_id)

    async def _resolve_tenant(self, profile: Profile, academy_id: str | None) -> str | None:
        """Tenant of the requested academy when the caller owns it or is a member.

        Falls back to the profile's own tenant otherwise.
        """
        if academy_id:
            academy = await self._directory.get_academy(academy_id)
            if academy is not None:
                if academy.owner_profile_id == profile.profile_id:
                    return academy.tenant_id
                membership = await self._directory.get_membership(profile.identity, academy_id)
                if membership is not None:
                    return academy.tenant_id
        return profile.tenant_id or None
