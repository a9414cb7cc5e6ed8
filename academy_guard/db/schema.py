"""PostgreSQL connection and schema definitions."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from academy_guard.core.logging import get_logger
from config.settings import get_settings

log = get_logger(__name__)

metadata = MetaData()

# ── Tables ───────────────────────────────────────────────────────

profiles = Table(
    "profiles",
    metadata,
    Column("profile_id", String, primary_key=True),
    Column("identity", String, nullable=False, unique=True),
    Column("role", String, nullable=False),
    Column("tenant_id", String, nullable=True, index=True),
    Column("name", String),
    Column("is_suspended", Boolean, nullable=False, server_default=text("false")),
    Column("active_academy_id", String),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("now()")),
)

academies = Table(
    "academies",
    metadata,
    Column("academy_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("owner_profile_id", String, index=True),
    Column("name", String),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("now()")),
)

memberships = Table(
    "memberships",
    metadata,
    Column("identity", String, primary_key=True),
    Column("academy_id", String, primary_key=True),
    Column("role", String, nullable=False),
)

groups = Table(
    "groups",
    metadata,
    Column("group_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("academy_id", String, nullable=False, index=True),
    Column("name", String),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("now()")),
)

athletes = Table(
    "athletes",
    metadata,
    Column("athlete_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("academy_id", String, nullable=False, index=True),
    Column("name", String),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("now()")),
)

coaches = Table(
    "coaches",
    metadata,
    Column("coach_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("academy_id", String, nullable=False, index=True),
    Column("name", String),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("now()")),
)

classes = Table(
    "classes",
    metadata,
    Column("class_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("academy_id", String, nullable=False, index=True),
    Column("name", String),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("now()")),
)

subscriptions = Table(
    "subscriptions",
    metadata,
    Column("subscription_id", String, primary_key=True),
    Column("identity", String, nullable=False, index=True),
    Column("plan_code", String, nullable=False),
    Column("status", String, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=text("now()")),
)

# At most one active subscription per identity.
Index(
    "uq_subscriptions_active_identity",
    subscriptions.c.identity,
    unique=True,
    postgresql_where=text("status = 'active'"),
)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("log_id", String, primary_key=True),
    Column("actor_identity", String, nullable=False, index=True),
    Column("action", String, nullable=False),
    Column("target_identity", String),
    Column("target_resource", String),
    Column("meta", JSONB),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
)


# ── Engine ───────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


async def get_engine() -> AsyncEngine:
    """Get or create the async database engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        db_url = settings.database_url.get_secret_value()
        _engine = create_async_engine(
            db_url,
            echo=False,
            pool_size=10,
            max_overflow=20,
        )
        log.info("database_engine_created", host=db_url.split("@")[-1].split("?")[0])
    return _engine


# REVOKE does not bind the table owner, which is the app role; the trigger does.
AUDIT_APPEND_ONLY_DDL = (
    "REVOKE UPDATE, DELETE ON audit_logs FROM PUBLIC",
    """
    CREATE OR REPLACE FUNCTION audit_logs_append_only() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'audit_logs is append-only';
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS audit_logs_append_only ON audit_logs",
    """
    CREATE TRIGGER audit_logs_append_only
    BEFORE UPDATE OR DELETE ON audit_logs
    FOR EACH ROW EXECUTE FUNCTION audit_logs_append_only()
    """,
)


async def init_schema() -> None:
    """Create all tables and make the audit log append-only."""
    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        for statement in AUDIT_APPEND_ONLY_DDL:
            await conn.execute(text(statement))

    log.info("schema_initialized")


async def close_engine() -> None:
    """Dispose the database engine."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        log.info("database_engine_closed")
