"""Tests for tenant context resolution and JWT handling."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, patch

import pytest

from academy_guard.core.exceptions import (
    AccountSuspendedError,
    InternalLookupError,
    TenantRequiredError,
    UnauthenticatedError,
)
from academy_guard.core.types import Role
from academy_guard.db.memory import InMemoryStore
from academy_guard.saas.context import (
    Anonymous,
    Authenticated,
    JWTManager,
    SuperAdmin,
    TenantContextResolver,
    TenantScoped,
    ViewAs,
    _b64url_encode,
    require_profile,
    require_tenant,
)


class TestJWTManager:
    def test_roundtrip(self, jwt: JWTManager) -> None:
        assert jwt.identity_from(jwt.create_token("auth0|user-1")) == "auth0|user-1"

    def test_wrong_secret(self, jwt: JWTManager) -> None:
        token = JWTManager(secret="other").create_token("user-1")
        assert jwt.identity_from(token) is None

    def test_tampered_body(self, jwt: JWTManager) -> None:
        header, _, sig = jwt.create_token("user-1").split(".")
        forged_body = _b64url_encode(b'{"sub": "admin", "exp": 9999999999}')
        assert jwt.identity_from(f"{header}.{forged_body}.{sig}") is None

    def test_other_algorithm_refused(self, jwt: JWTManager) -> None:
        _, body, _ = jwt.create_token("user-1").split(".")
        header = _b64url_encode(b'{"alg": "none", "typ": "JWT"}')
        signing_input = f"{header}.{body}"
        assert jwt.identity_from(f"{signing_input}.{jwt._sign(signing_input)}") is None

    def test_expired(self, jwt: JWTManager) -> None:
        token = jwt.create_token("user-1")
        with patch("academy_guard.saas.context.time.time", return_value=time.time() + 7200):
            assert jwt.identity_from(token) is None

    @pytest.mark.parametrize("token", ["not-a-jwt", "a.b", "a.b.c.d", "\u00e9.\u00e9.\u00e9"])
    def test_malformed(self, jwt: JWTManager, token: str) -> None:
        assert jwt.identity_from(token) is None

    def test_empty_identity_refused(self, jwt: JWTManager) -> None:
        assert jwt.identity_from(jwt.create_token("")) is None


class TestResolver:
    @pytest.mark.asyncio
    async def test_missing_credential(self, store: InMemoryStore, jwt: JWTManager) -> None:
        with pytest.raises(UnauthenticatedError):
            await TenantContextResolver(store, jwt).resolve(None)

    @pytest.mark.asyncio
    async def test_optional_returns_anonymous(self, store: InMemoryStore, jwt: JWTManager) -> None:
        ctx = await TenantContextResolver(store, jwt).resolve_optional(None)
        assert isinstance(ctx, Anonymous)

    @pytest.mark.asyncio
    async def test_unknown_identity(self, store: InMemoryStore, jwt: JWTManager) -> None:
        with pytest.raises(UnauthenticatedError):
            await TenantContextResolver(store, jwt).resolve(jwt.create_token("ghost"))

    @pytest.mark.asyncio
    async def test_profile_tenant(self, store: InMemoryStore, jwt: JWTManager) -> None:
        store.add_profile("coach-1", role=Role.COACH, tenant_id="t1")
        ctx = await TenantContextResolver(store, jwt).resolve(jwt.create_token("coach-1"))
        assert isinstance(ctx, TenantScoped)
        assert ctx.tenant_id == "t1"
        assert ctx.kind == "tenant"

    @pytest.mark.asyncio
    async def test_no_tenant(self, store: InMemoryStore, jwt: JWTManager) -> None:
        store.add_profile("newcomer")
        ctx = await TenantContextResolver(store, jwt).resolve(jwt.create_token("newcomer"))
        assert isinstance(ctx, Authenticated)

    @pytest.mark.asyncio
    async def test_tenant_from_owned_academy(self, store: InMemoryStore, jwt: JWTManager) -> None:
        owner = store.add_profile("owner-1", tenant_id="t1")
        store.add_academy("acad-2", "t2", owner)
        ctx = await TenantContextResolver(store, jwt).resolve(jwt.create_token("owner-1"), "acad-2")
        assert isinstance(ctx, TenantScoped)
        assert ctx.tenant_id == "t2"

    @pytest.mark.asyncio
    async def test_tenant_from_membership(self, store: InMemoryStore, jwt: JWTManager) -> None:
        owner = store.add_profile("owner-1", tenant_id="t2")
        store.add_academy("acad-2", "t2", owner)
        store.add_profile("coach-1", role=Role.COACH, tenant_id="t1")
        store.add_membership("coach-1", "acad-2", Role.COACH)
        ctx = await TenantContextResolver(store, jwt).resolve(jwt.create_token("coach-1"), "acad-2")
        assert isinstance(ctx, TenantScoped)
        assert ctx.tenant_id == "t2"

    @pytest.mark.asyncio
    async def test_foreign_academy_keeps_own_tenant(
        self, store: InMemoryStore, jwt: JWTManager,
    ) -> None:
        owner = store.add_profile("owner-2", tenant_id="t2")
        store.add_academy("acad-2", "t2", owner)
        store.add_profile("intruder", tenant_id="t1")
        ctx = await TenantContextResolver(store, jwt).resolve(jwt.create_token("intruder"), "acad-2")
        assert isinstance(ctx, TenantScoped)
        assert ctx.tenant_id == "t1"

    @pytest.mark.asyncio
    async def test_super_admin(self, store: InMemoryStore, jwt: JWTManager) -> None:
        store.add_profile("root", role=Role.SUPER_ADMIN)
        ctx = await TenantContextResolver(store, jwt).resolve(jwt.create_token("root"))
        assert isinstance(ctx, SuperAdmin)
        assert ctx.tenant_id is None

    @pytest.mark.asyncio
    async def test_lookup_failure_escalates(self, jwt: JWTManager) -> None:
        directory = AsyncMock()
        directory.get_profile_by_identity.side_effect = ConnectionError("db down")
        with pytest.raises(InternalLookupError):
            await TenantContextResolver(directory, jwt).resolve(jwt.create_token("x"))


class TestRequireTenant:
    def test_anonymous(self) -> None:
        with pytest.raises(UnauthenticatedError):
            require_tenant(Anonymous())

    def test_authenticated_without_tenant(self, store: InMemoryStore) -> None:
        profile = store.add_profile("newcomer")
        with pytest.raises(TenantRequiredError):
            require_tenant(Authenticated(profile=profile))

    def test_tenant_scoped_passes(self, store: InMemoryStore) -> None:
        profile = store.add_profile("owner", tenant_id="t1")
        ctx = TenantScoped(profile=profile, tenant_id="t1")
        assert require_tenant(ctx) is ctx

    @pytest.mark.parametrize("role", [Role.OWNER, Role.ADMIN, Role.COACH, Role.SUPER_ADMIN])
    def test_suspended_refused_regardless_of_role(self, store: InMemoryStore, role: Role) -> None:
        profile = store.add_profile("p", role=role, tenant_id="t1", is_suspended=True)
        ctx = (
            SuperAdmin(profile=profile, tenant_id="t1")
            if role == Role.SUPER_ADMIN
            else TenantScoped(profile=profile, tenant_id="t1")
        )
        with pytest.raises(AccountSuspendedError):
            require_tenant(ctx)

    def test_super_admin_with_tenant_narrowed(self, store: InMemoryStore) -> None:
        profile = store.add_profile("root", role=Role.SUPER_ADMIN, tenant_id="t1")
        narrowed = require_tenant(SuperAdmin(profile=profile, tenant_id="t1"))
        assert isinstance(narrowed, TenantScoped)

    def test_view_as_uses_target_tenant(self, store: InMemoryStore) -> None:
        admin = store.add_profile("root", role=Role.SUPER_ADMIN)
        target = store.add_profile("owner", tenant_id="t7")
        ctx = ViewAs(actor=admin, profile=target, tenant_id="t7")
        assert require_tenant(ctx) is ctx

    def test_require_profile(self, store: InMemoryStore) -> None:
        profile = store.add_profile("newcomer")
        assert require_profile(Authenticated(profile=profile)) is profile
        with pytest.raises(UnauthenticatedError):
            require_profile(Anonymous())
        suspended = store.add_profile("gone", is_suspended=True)
        with pytest.raises(AccountSuspendedError):
            require_profile(Authenticated(profile=suspended))
