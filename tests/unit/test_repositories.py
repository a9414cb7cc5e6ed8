"""Tests for the PostgreSQL-backed stores (engine mocked)."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from academy_guard.core.types import AuditEntry, ResourceType, Role, SubscriptionStatus
from academy_guard.db.repositories import SqlAuditLog, SqlDirectoryStore, SqlResourceStore
from academy_guard.db import schema


class _FakeMapping(dict):  # type: ignore[type-arg]
    """Dict subclass standing in for a RowMapping."""
    pass


def _profile_row(**kwargs: object) -> _FakeMapping:
    defaults = {
        "profile_id": "p1",
        "identity": "user-1",
        "role": "owner",
        "tenant_id": "t1",
        "name": "Owner",
        "is_suspended": False,
        "active_academy_id": None,
        "created_at": datetime.now(timezone.utc),
    }
    defaults.update(kwargs)
    return _FakeMapping(defaults)


def _mock_engine(mock_conn: AsyncMock) -> MagicMock:
    """Create a mock engine with proper async context manager for begin()."""
    engine = MagicMock()

    @asynccontextmanager
    async def _begin() -> AsyncIterator[AsyncMock]:
        yield mock_conn

    engine.begin = _begin
    return engine


def _conn_returning(row: object) -> AsyncMock:
    mock_result = MagicMock()
    mock_result.mappings.return_value.first.return_value = row
    mock_conn = AsyncMock()
    mock_conn.execute.return_value = mock_result
    return mock_conn


def _sql(call: object) -> str:
    return str(call.args[0])  # type: ignore[attr-defined]


class TestRowConversion:
    def test_profile(self) -> None:
        profile = SqlDirectoryStore._row_to_profile(_profile_row(role="coach"))
        assert profile.role == Role.COACH
        assert profile.tenant_id == "t1"

    def test_unknown_subscription_status_is_canceled(self) -> None:
        row = _FakeMapping(
            subscription_id="s1", identity="user-1", plan_code="pro", status="trialing",
        )
        subscription = SqlDirectoryStore._row_to_subscription(row)
        assert subscription.status == SubscriptionStatus.CANCELED


class TestDirectoryStore:
    @pytest.mark.asyncio
    async def test_get_profile_found(self) -> None:
        conn = _conn_returning(_profile_row(profile_id="found"))
        profile = await SqlDirectoryStore(_mock_engine(conn)).get_profile("found")
        assert profile is not None
        assert profile.profile_id == "found"

    @pytest.mark.asyncio
    async def test_get_profile_not_found(self) -> None:
        conn = _conn_returning(None)
        assert await SqlDirectoryStore(_mock_engine(conn)).get_profile("nope") is None

    @pytest.mark.asyncio
    async def test_update_never_matches_super_admin(self) -> None:
        conn = _conn_returning(None)
        store = SqlDirectoryStore(_mock_engine(conn))
        with pytest.raises(LookupError):
            await store.update_profile("root", {"role": Role.OWNER})

        sql = _sql(conn.execute.call_args)
        assert "role <> 'super_admin'" in sql
        assert conn.execute.call_args.args[1]["role"] == "owner"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_columns(self) -> None:
        store = SqlDirectoryStore(_mock_engine(_conn_returning(None)))
        with pytest.raises(ValueError):
            await store.update_profile("p1", {"identity": "hijack"})

    @pytest.mark.asyncio
    async def test_set_subscription_inserts_when_missing(self) -> None:
        update_result = MagicMock()
        update_result.mappings.return_value.first.return_value = None
        insert_result = MagicMock()
        insert_result.mappings.return_value.first.return_value = _FakeMapping(
            subscription_id="s1", identity="user-1", plan_code="pro", status="active",
        )
        conn = AsyncMock()
        conn.execute.side_effect = [update_result, insert_result]

        subscription = await SqlDirectoryStore(_mock_engine(conn)).set_subscription_plan(
            "user-1", "pro",
        )
        assert subscription.plan_code == "pro"
        assert conn.execute.call_count == 2
        assert "INSERT INTO subscriptions" in _sql(conn.execute.call_args_list[1])


class TestResourceStore:
    @pytest.mark.asyncio
    async def test_count(self) -> None:
        result = MagicMock()
        result.scalar.return_value = 7
        conn = AsyncMock()
        conn.execute.return_value = result

        count = await SqlResourceStore(_mock_engine(conn)).count("a1", ResourceType.ATHLETES, "t1")
        assert count == 7
        assert "FROM athletes" in _sql(conn.execute.call_args)

    @pytest.mark.asyncio
    async def test_quota_scope_locks_academy_row(self) -> None:
        count_result = MagicMock()
        count_result.scalar.return_value = 2
        conn = AsyncMock()
        conn.execute.side_effect = [MagicMock(), count_result, MagicMock()]

        store = SqlResourceStore(_mock_engine(conn))
        async with store.quota_scope(ResourceType.GROUPS, "a1") as txn:
            assert await txn.count("a1", ResourceType.GROUPS, "t1") == 2
            new_id = await txn.insert(
                ResourceType.GROUPS, {"tenant_id": "t1", "academy_id": "a1", "name": "Kids"},
            )

        statements = [_sql(c) for c in conn.execute.call_args_list]
        assert "FROM academies" in statements[0] and "FOR UPDATE" in statements[0]
        assert "INSERT INTO groups" in statements[2]
        assert conn.execute.call_args_list[2].args[1]["id"] == new_id

    @pytest.mark.asyncio
    async def test_academy_scope_locks_owner_row(self) -> None:
        conn = AsyncMock()
        store = SqlResourceStore(_mock_engine(conn))
        async with store.quota_scope(ResourceType.ACADEMIES, "p1"):
            pass
        assert "FROM profiles" in _sql(conn.execute.call_args_list[0])


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_append_is_insert(self) -> None:
        conn = AsyncMock()
        entry = AuditEntry(actor_identity="root", action="view_as", meta={"k": "v"})
        await SqlAuditLog(_mock_engine(conn)).append(entry)

        sql = _sql(conn.execute.call_args)
        assert "INSERT INTO audit_logs" in sql
        assert "UPDATE" not in sql
        assert json.loads(conn.execute.call_args.args[1]["meta"]) == {"k": "v"}

    @pytest.mark.asyncio
    async def test_recent_parses_meta(self) -> None:
        row = _FakeMapping(
            actor_identity="root",
            action="change_plan",
            target_identity="owner-b",
            target_resource="profile:p1",
            meta='{"plan": "free"}',
            created_at=datetime.now(timezone.utc),
        )
        result = MagicMock()
        result.mappings.return_value.all.return_value = [row]
        conn = AsyncMock()
        conn.execute.return_value = result

        entries = await SqlAuditLog(_mock_engine(conn)).recent(limit=5, actor_identity="root")
        assert entries[0].meta == {"plan": "free"}
        assert conn.execute.call_args.args[1] == {"limit": 5, "actor": "root"}


class TestInitSchema:
    @pytest.mark.asyncio
    async def test_audit_log_made_append_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock_conn = AsyncMock()
        monkeypatch.setattr(schema, "get_engine", AsyncMock(return_value=_mock_engine(mock_conn)))

        await schema.init_schema()

        mock_conn.run_sync.assert_awaited_once()
        statements = [_sql(c) for c in mock_conn.execute.call_args_list]
        assert any("REVOKE UPDATE, DELETE ON audit_logs" in s for s in statements)
        trigger = [s for s in statements if "CREATE TRIGGER audit_logs_append_only" in s]
        assert trigger and "BEFORE UPDATE OR DELETE" in trigger[0]
