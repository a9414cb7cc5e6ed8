"""DB-backed stores: async PostgreSQL implementations of the core interfaces."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
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

# resource type -> (table, primary key column, insertable columns)
_RESOURCE_TABLES: dict[ResourceType, tuple[str, str, tuple[str, ...]]] = {
    ResourceType.ATHLETES: ("athletes", "athlete_id", ("tenant_id", "academy_id", "name")),
    ResourceType.COACHES: ("coaches", "coach_id", ("tenant_id", "academy_id", "name")),
    ResourceType.CLASSES: ("classes", "class_id", ("tenant_id", "academy_id", "name")),
    ResourceType.GROUPS: ("groups", "group_id", ("tenant_id", "academy_id", "name")),
    ResourceType.ACADEMIES: ("academies", "academy_id", ("tenant_id", "owner_profile_id", "name")),
}

_PROFILE_COLUMNS = frozenset({"role", "is_suspended", "name", "tenant_id", "active_academy_id"})


async def _count(
    conn: AsyncConnection,
    scope_id: str,
    resource_type: ResourceType,
    tenant_id: str | None,
) -> int:
    table, _, _ = _RESOURCE_TABLES[resource_type]
    if resource_type == ResourceType.ACADEMIES:
        query = f"SELECT count(*) FROM {table} WHERE owner_profile_id = :scope"
        params: dict[str, Any] = {"scope": scope_id}
    elif tenant_id is None:
        query = f"SELECT count(*) FROM {table} WHERE academy_id = :scope"
        params = {"scope": scope_id}
    else:
        query = f"SELECT count(*) FROM {table} WHERE academy_id = :scope AND tenant_id = :tid"
        params = {"scope": scope_id, "tid": tenant_id}
    result = await conn.execute(text(query), params)
    return int(result.scalar() or 0)


class SqlDirectoryStore(DirectoryStore):
    """Profiles, academies, groups, memberships and subscriptions."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def _first(self, query: str, params: dict[str, Any]) -> Any:
        async with self._engine.begin() as conn:
            row = await conn.execute(text(query), params)
            return row.mappings().first()

    async def get_profile(self, profile_id: str) -> Profile | None:
        r = await self._first("SELECT * FROM profiles WHERE profile_id = :pid", {"pid": profile_id})
        return self._row_to_profile(r) if r is not None else None

    async def get_profile_by_identity(self, identity: str) -> Profile | None:
        r = await self._first("SELECT * FROM profiles WHERE identity = :ident", {"ident": identity})
        return self._row_to_profile(r) if r is not None else None

    async def update_profile(self, profile_id: str, changes: dict[str, Any]) -> Profile:
        unknown = set(changes) - _PROFILE_COLUMNS
        if unknown:
            msg = f"Cannot update profile columns: {sorted(unknown)}"
            raise ValueError(msg)

        params: dict[str, Any] = {"pid": profile_id}
        assignments = []
        for column, value in changes.items():
            assignments.append(f"{column} = :{column}")
            params[column] = value.value if isinstance(value, Role) else value

        # super_admin rows are never matched, even if a caller skipped validation.
        query = (
            f"UPDATE profiles SET {', '.join(assignments)} "
            "WHERE profile_id = :pid AND role <> 'super_admin' RETURNING *"
        )
        async with self._engine.begin() as conn:
            result = await conn.execute(text(query), params)
            r = result.mappings().first()
        if r is None:
            msg = f"Profile {profile_id} not updatable"
            raise LookupError(msg)
        log.info("profile_row_updated", profile_id=profile_id, fields=sorted(changes))
        return self._row_to_profile(r)

    async def get_membership(self, identity: str, academy_id: str) -> Membership | None:
        r = await self._first(
            "SELECT * FROM memberships WHERE identity = :ident AND academy_id = :aid",
            {"ident": identity, "aid": academy_id},
        )
        if r is None:
            return None
        return Membership(identity=r["identity"], academy_id=r["academy_id"], role=Role(r["role"]))

    async def get_academy(self, academy_id: str) -> Academy | None:
        r = await self._first("SELECT * FROM academies WHERE academy_id = :aid", {"aid": academy_id})
        return self._row_to_academy(r) if r is not None else None

    async def list_owned_academies(self, owner_profile_id: str) -> list[Academy]:
        async with self._engine.begin() as conn:
            result = await conn.execute(
                text(
                    "SELECT * FROM academies WHERE owner_profile_id = :pid "
                    "ORDER BY created_at"
                ),
                {"pid": owner_profile_id},
            )
            rows = result.mappings().all()
        return [self._row_to_academy(r) for r in rows]

    async def get_group(self, group_id: str) -> Group | None:
        r = await self._first("SELECT * FROM groups WHERE group_id = :gid", {"gid": group_id})
        if r is None:
            return None
        return Group(
            group_id=r["group_id"],
            tenant_id=r["tenant_id"],
            academy_id=r["academy_id"],
            name=r.get("name"),
        )

    async def get_active_subscription(self, identity: str) -> Subscription | None:
        r = await self._first(
            "SELECT * FROM subscriptions WHERE identity = :ident AND status = 'active' LIMIT 1",
            {"ident": identity},
        )
        return self._row_to_subscription(r) if r is not None else None

    async def set_subscription_plan(self, identity: str, plan_code: str) -> Subscription:
        now = datetime.now(timezone.utc)
        async with self._engine.begin() as conn:
            result = await conn.execute(
                text(
                    "UPDATE subscriptions SET plan_code = :plan, updated_at = :now "
                    "WHERE identity = :ident AND status = 'active' RETURNING *"
                ),
                {"plan": plan_code, "now": now, "ident": identity},
            )
            r = result.mappings().first()
            if r is None:
                result = await conn.execute(
                    text(
                        """
                        INSERT INTO subscriptions
                            (subscription_id, identity, plan_code, status, updated_at)
                        VALUES
                            (:sid, :ident, :plan, 'active', :now)
                        RETURNING *
                        """
                    ),
                    {"sid": str(uuid7()), "ident": identity, "plan": plan_code, "now": now},
                )
                r = result.mappings().first()
        return self._row_to_subscription(r)

    @staticmethod
    def _row_to_profile(r: Any) -> Profile:
        return Profile(
            profile_id=r["profile_id"],
            identity=r["identity"],
            role=Role(r["role"]),
            tenant_id=r.get("tenant_id"),
            name=r.get("name"),
            is_suspended=bool(r.get("is_suspended", False)),
            active_academy_id=r.get("active_academy_id"),
            created_at=r.get("created_at") or datetime.now(timezone.utc),
        )

    @staticmethod
    def _row_to_academy(r: Any) -> Academy:
        return Academy(
            academy_id=r["academy_id"],
            tenant_id=r["tenant_id"],
            owner_profile_id=r.get("owner_profile_id"),
            name=r.get("name"),
        )

    @staticmethod
    def _row_to_subscription(r: Any) -> Subscription:
        try:
            status = SubscriptionStatus(r["status"])
        except ValueError:
            status = SubscriptionStatus.CANCELED
        return Subscription(
            subscription_id=r["subscription_id"],
            identity=r["identity"],
            plan_code=r["plan_code"],
            status=status,
        )


class SqlResourceStore(ResourceStore):
    """Counts and guarded inserts of quota-bound rows."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def count(
        self, scope_id: str, resource_type: ResourceType, tenant_id: str | None = None,
    ) -> int:
        async with self._engine.begin() as conn:
            return await _count(conn, scope_id, resource_type, tenant_id)

    @asynccontextmanager
    async def quota_scope(
        self, resource_type: ResourceType, scope_id: str,
    ) -> AsyncIterator[QuotaTransaction]:
        """Lock the scope row, then count and insert in the same transaction.

        Concurrent creators for the same academy (or owner, for academies)
        queue on the ``FOR UPDATE`` lock; each sees the previous one's row
        once it commits.
        """
        if resource_type == ResourceType.ACADEMIES:
            lock_query = "SELECT profile_id FROM profiles WHERE profile_id = :sid FOR UPDATE"
        else:
            lock_query = "SELECT academy_id FROM academies WHERE academy_id = :sid FOR UPDATE"

        async with self._engine.begin() as conn:
            await conn.execute(text(lock_query), {"sid": scope_id})
            yield _SqlQuotaTransaction(conn)


class _SqlQuotaTransaction(QuotaTransaction):
    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def count(
        self, scope_id: str, resource_type: ResourceType, tenant_id: str | None = None,
    ) -> int:
        return await _count(self._conn, scope_id, resource_type, tenant_id)

    async def insert(self, resource_type: ResourceType, values: dict[str, Any]) -> str:
        table, pk, columns = _RESOURCE_TABLES[resource_type]
        resource_id = str(uuid7())
        params: dict[str, Any] = {"id": resource_id, "now": datetime.now(timezone.utc)}
        present = [c for c in columns if c in values]
        for c in present:
            params[c] = values[c]

        col_sql = ", ".join([pk, *present, "created_at"])
        val_sql = ", ".join([":id", *(f":{c}" for c in present), ":now"])
        await self._conn.execute(
            text(f"INSERT INTO {table} ({col_sql}) VALUES ({val_sql})"),
            params,
        )
        return resource_id


class SqlAuditLog(AuditLogStore):
    """INSERT-only audit log table."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def append(self, entry: AuditEntry) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO audit_logs
                        (log_id, actor_identity, action, target_identity,
                         target_resource, meta, created_at)
                    VALUES
                        (:lid, :actor, :action, :tident,
                         :tres, :meta, :ts)
                    """
                ),
                {
                    "lid": str(uuid7()),
                    "actor": entry.actor_identity,
                    "action": entry.action,
                    "tident": entry.target_identity,
                    "tres": entry.target_resource,
                    "meta": json.dumps(entry.meta, default=str),
                    "ts": entry.timestamp,
                },
            )

    async def recent(self, limit: int = 100, actor_identity: str | None = None) -> list[AuditEntry]:
        query = "SELECT * FROM audit_logs"
        params: dict[str, Any] = {"limit": limit}
        if actor_identity:
            query += " WHERE actor_identity = :actor"
            params["actor"] = actor_identity
        query += " ORDER BY created_at DESC LIMIT :limit"

        async with self._engine.begin() as conn:
            result = await conn.execute(text(query), params)
            rows = result.mappings().all()
        return [self._row_to_entry(r) for r in rows]

    @staticmethod
    def _row_to_entry(r: Any) -> AuditEntry:
        meta = r["meta"] if r["meta"] else {}
        if isinstance(meta, str):
            meta = json.loads(meta)
        return AuditEntry(
            actor_identity=r["actor_identity"],
            action=r["action"],
            target_identity=r.get("target_identity"),
            target_resource=r.get("target_resource"),
            meta=meta,
            timestamp=r["created_at"],
        )
