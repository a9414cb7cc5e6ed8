"""Post-commit domain events and the outbound notification queue.

Side effects (analytics, onboarding checklist, notification emails) hang off
events emitted after the primary write commits. Each handler runs as its own
task; a failing handler is logged and never reaches the caller that emitted
the event.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis

from academy_guard.core.interfaces import NotificationDispatcher
from academy_guard.core.logging import get_logger
from academy_guard.core.types import ResourceType, Violation

log = get_logger(__name__)


# ── Events ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class DomainEvent:
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), kw_only=True,
    )


@dataclass(frozen=True)
class ResourceCreated(DomainEvent):
    resource: ResourceType
    resource_id: str
    tenant_id: str
    academy_id: str | None


@dataclass(frozen=True)
class PlanChanged(DomainEvent):
    identity: str
    old_plan: str | None
    new_plan: str


@dataclass(frozen=True)
class PlanDowngradeForced(DomainEvent):
    identity: str
    new_plan: str
    violations: tuple[Violation, ...]


EventHandler = Callable[[Any], Awaitable[None]]


class EventBus:
    """In-process fan-out of events to independent async handlers."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def emit(self, event: DomainEvent) -> None:
        """Schedule every handler for ``event``. Call only after commit."""
        for handler in self._handlers.get(type(event), []):
            task = asyncio.get_running_loop().create_task(self._run(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for all scheduled handlers (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _run(handler: EventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as exc:
            log.error(
                "event_handler_failed",
                event=type(event).__name__,
                handler=getattr(handler, "__qualname__", repr(handler)),
                error=str(exc),
            )


# ── Notification queues ──────────────────────────────────────────

class RedisNotificationQueue(NotificationDispatcher):
    """LPUSH JSON notifications onto a Redis list for the mail worker."""

    def __init__(self, redis_url: str, queue_key: str) -> None:
        self._redis_url = redis_url
        self._queue_key = queue_key
        self._redis: aioredis.Redis | None = None

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            log.info("redis_connected", queue=self._queue_key)
        return self._redis

    async def enqueue(self, recipient_identity: str, kind: str, payload: dict[str, Any]) -> None:
        r = await self._get_redis()
        message = json.dumps(
            {"recipient": recipient_identity, "kind": kind, "payload": payload},
            default=str,
        )
        await r.lpush(self._queue_key, message)
        log.info("notification_enqueued", kind=kind, recipient=recipient_identity)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            log.info("redis_closed")


class InMemoryNotificationQueue(NotificationDispatcher):
    """Collects notifications in a list. For tests and local development."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def enqueue(self, recipient_identity: str, kind: str, payload: dict[str, Any]) -> None:
        self.messages.append({"recipient": recipient_identity, "kind": kind, "payload": payload})


# ── Handlers ─────────────────────────────────────────────────────

def downgrade_notification_payload(event: PlanDowngradeForced) -> dict[str, Any]:
    """Describe exactly which resources must be pruned after a forced downgrade."""
    items = []
    for v in event.violations:
        item = asdict(v)
        item["resource"] = v.resource.value
        item["to_remove"] = v.excess
        items.append(item)
    return {"new_plan": event.new_plan, "violations": items}


def register_default_handlers(bus: EventBus, notifications: NotificationDispatcher) -> None:
    """Wire the engine's own side effects onto the bus."""

    async def notify_forced_downgrade(event: PlanDowngradeForced) -> None:
        await notifications.enqueue(
            event.identity,
            "plan_downgrade_action_required",
            downgrade_notification_payload(event),
        )

    async def log_resource_created(event: ResourceCreated) -> None:
        log.info(
            "resource_created",
            resource=event.resource.value,
            resource_id=event.resource_id,
            tenant_id=event.tenant_id,
            academy_id=event.academy_id,
        )

    bus.subscribe(PlanDowngradeForced, notify_forced_downgrade)
    bus.subscribe(ResourceCreated, log_resource_created)
