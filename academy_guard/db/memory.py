"""In-memory storage with the same visibility and locking rules as the DB.

Replace with the SQL-backed stores in ``academy_guard.db.repositories`` for
production. Inserts made inside a quota transaction stay invisible to other
readers until the transaction commits, and each quota scope has its own lock.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from uuid_extensions import uuid7

from academy_guard.core.interfaces import (
    AuditLogStore,
    DirectoryStore,
    QuotaTransaction,
    ResourceStore,
)
from academy_guard.core.logging import get_logger
from academy_guard.core.types import (
    Academy,
    AuditEntry,
    Group,
    Membership,
    Profile,
    ResourceType,
    Role,
    Subscription,
    SubscriptionStatus,
)

log = get_logger(__name__)


class InMemoryStore(DirectoryStore, ResourceStore):
    """Directory and resource rows held in dicts.

    Quota scopes are serialized with one ``asyncio.Lock`` per scope id. Locks
    are kept for the life of the store and never evicted, which is fine for
    tests and local runs but not for a long-lived process.
    """

    def __init__(self) -> None:
        self.profiles: dict[str, Profile] = {}
        self.memberships: dict[tuple[str, str], Membership] = {}
        self.academies: dict[str, Academy] = {}
        self.groups: dict[str, Group] = {}
        self.subscriptions: dict[str, Subscription] = {}  # identity -> subscription
        self._rows: dict[ResourceType, dict[str, dict[str, Any]]] = {
            ResourceType.ATHLETES: {},
            ResourceType.COACHES: {},
            ResourceType.CLASSES: {},
        }
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    # ── Seeding ──────────────────────────────────────────────────

    def add_profile(
        self,
        identity: str,
        role: Role = Role.OWNER,
        tenant_id: str | None = None,
        *,
        profile_id: str | None = None,
        name: str | None = None,
        is_suspended: bool = False,
    ) -> Profile:
        profile = Profile(
            profile_id=profile_id or f"profile-{identity}",
            identity=identity,
            role=role,
            tenant_id=tenant_id,
            name=name,
            is_suspended=is_suspended,
        )
        self.profiles[profile.profile_id] = profile
        return profile

    def add_academy(
        self, academy_id: str, tenant_id: str, owner: Profile | None, name: str | None = None,
    ) -> Academy:
        academy = Academy(
            academy_id=academy_id,
            tenant_id=tenant_id,
            owner_profile_id=owner.profile_id if owner else None,
            name=name or academy_id,
        )
        self.academies[academy_id] = academy
        return academy

    def add_group(self, group_id: str, academy: Academy, name: str | None = None) -> Group:
        group = Group(
            group_id=group_id,
            tenant_id=academy.tenant_id,
            academy_id=academy.academy_id,
            name=name,
        )
        self.groups[group_id] = group
        return group

    def add_membership(self, identity: str, academy_id: str, role: Role) -> Membership:
        membership = Membership(identity=identity, academy_id=academy_id, role=role)
        self.memberships[(identity, academy_id)] = membership
        return membership

    def add_subscription(
        self,
        identity: str,
        plan_code: str,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        subscription = Subscription(
            subscription_id=str(uuid7()),
            identity=identity,
            plan_code=plan_code,
            status=status,
        )
        self.subscriptions[identity] = subscription
        return subscription

    def seed_resources(self, academy: Academy, resource: ResourceType, n: int) -> None:
        """Insert ``n`` committed rows of ``resource`` into ``academy``."""
        for i in range(n):
            row = {"tenant_id": academy.tenant_id, "academy_id": academy.academy_id}
            if resource == ResourceType.GROUPS:
                group_id = str(uuid7())
                self.groups[group_id] = Group(
                    group_id=group_id,
                    tenant_id=academy.tenant_id,
                    academy_id=academy.academy_id,
                    name=f"group-{i}",
                )
            elif resource == ResourceType.ACADEMIES:
                msg = "Seed academies with add_academy"
                raise ValueError(msg)
            else:
                self._rows[resource][str(uuid7())] = row

    # ── DirectoryStore ───────────────────────────────────────────

    async def get_profile(self, profile_id: str) -> Profile | None:
        return self.profiles.get(profile_id)

    async def get_profile_by_identity(self, identity: str) -> Profile | None:
        for profile in self.profiles.values():
            if profile.identity == identity:
                return profile
        return None

    async def update_profile(self, profile_id: str, changes: dict[str, Any]) -> Profile:
        updated = dataclasses.replace(self.profiles[profile_id], **changes)
        self.profiles[profile_id] = updated
        return updated

    async def get_membership(self, identity: str, academy_id: str) -> Membership | None:
        return self.memberships.get((identity, academy_id))

    async def get_academy(self, academy_id: str) -> Academy | None:
        return self.academies.get(academy_id)

    async def list_owned_academies(self, owner_profile_id: str) -> list[Academy]:
        return [a for a in self.academies.values() if a.owner_profile_id == owner_profile_id]

    async def get_group(self, group_id: str) -> Group | None:
        return self.groups.get(group_id)

    async def get_active_subscription(self, identity: str) -> Subscription | None:
        subscription = self.subscriptions.get(identity)
        if subscription is None or subscription.status != SubscriptionStatus.ACTIVE:
            return None
        return subscription

    async def set_subscription_plan(self, identity: str, plan_code: str) -> Subscription:
        current = self.subscriptions.get(identity)
        if current is None:
            return self.add_subscription(identity, plan_code)
        updated = dataclasses.replace(current, plan_code=plan_code, status=SubscriptionStatus.ACTIVE)
        self.subscriptions[identity] = updated
        return updated

    # ── ResourceStore ────────────────────────────────────────────

    async def count(
        self, scope_id: str, resource_type: ResourceType, tenant_id: str | None = None,
    ) -> int:
        # Yield like a real query would, so concurrent callers interleave.
        await asyncio.sleep(0)
        return self._count_committed(scope_id, resource_type, tenant_id)

    def _count_committed(
        self, scope_id: str, resource_type: ResourceType, tenant_id: str | None,
    ) -> int:
        if resource_type == ResourceType.ACADEMIES:
            return sum(1 for a in self.academies.values() if a.owner_profile_id == scope_id)
        if resource_type == ResourceType.GROUPS:
            rows: list[dict[str, Any]] = [
                {"academy_id": g.academy_id, "tenant_id": g.tenant_id}
                for g in self.groups.values()
            ]
        else:
            rows = list(self._rows[resource_type].values())
        return sum(
            1
            for r in rows
            if r["academy_id"] == scope_id and (tenant_id is None or r["tenant_id"] == tenant_id)
        )

    @asynccontextmanager
    async def quota_scope(
        self, resource_type: ResourceType, scope_id: str,
    ) -> AsyncIterator[QuotaTransaction]:
        kind = "owner" if resource_type == ResourceType.ACADEMIES else "academy"
        lock = self._locks.setdefault((kind, scope_id), asyncio.Lock())
        async with lock:
            txn = _MemoryQuotaTransaction(self)
            yield txn
            self._commit(txn)

    def _commit(self, txn: _MemoryQuotaTransaction) -> None:
        for resource_type, resource_id, values in txn.staged:
            if resource_type == ResourceType.ACADEMIES:
                self.academies[resource_id] = Academy(
                    academy_id=resource_id,
                    tenant_id=values["tenant_id"],
                    owner_profile_id=values["owner_profile_id"],
                    name=values.get("name"),
                )
            elif resource_type == ResourceType.GROUPS:
                self.groups[resource_id] = Group(
                    group_id=resource_id,
                    tenant_id=values["tenant_id"],
                    academy_id=values["academy_id"],
                    name=values.get("name"),
                )
            else:
                self._rows[resource_type][resource_id] = dict(values)
        log.debug("memory_txn_committed", rows=len(txn.staged))


class _MemoryQuotaTransaction(QuotaTransaction):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store
        self.staged: list[tuple[ResourceType, str, dict[str, Any]]] = []

    async def count(
        self, scope_id: str, resource_type: ResourceType, tenant_id: str | None = None,
    ) -> int:
        committed = await self._store.count(scope_id, resource_type, tenant_id)
        scope_key = "owner_profile_id" if resource_type == ResourceType.ACADEMIES else "academy_id"
        own = sum(
            1
            for r, _, v in self.staged
            if r == resource_type and v.get(scope_key) == scope_id
        )
        return committed + own

    async def insert(self, resource_type: ResourceType, values: dict[str, Any]) -> str:
        resource_id = str(uuid7())
        self.staged.append((resource_type, resource_id, dict(values)))
        return resource_id


class InMemoryAuditLog(AuditLogStore):
    """Append-only list of audit entries."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    async def recent(self, limit: int = 100, actor_identity: str | None = None) -> list[AuditEntry]:
        results = self._entries
        if actor_identity:
            results = [e for e in results if e.actor_identity == actor_identity]
        return sorted(results, key=lambda e: e.timestamp, reverse=True)[:limit]

    @property
    def total_entries(self) -> int:
        return len(self._entries)
