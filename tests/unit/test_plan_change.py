"""Tests for plan changes and their post-commit side effects."""

from __future__ import annotations

import pytest

from academy_guard.core.types import (
    PlanChangeApplied,
    PlanCode,
    PlanLimitViolations,
    ResourceType,
)
from academy_guard.db.memory import InMemoryStore
from academy_guard.saas.events import (
    EventBus,
    InMemoryNotificationQueue,
    PlanChanged,
    PlanDowngradeForced,
    register_default_handlers,
)
from academy_guard.saas.plan_change import PlanChanger
from academy_guard.saas.plans import PlanCatalog
from academy_guard.saas.quota import QuotaEvaluator


def _changer(
    catalog: PlanCatalog, store: InMemoryStore, bus: EventBus,
) -> PlanChanger:
    quota = QuotaEvaluator(catalog, store, store, events=bus)
    return PlanChanger(store, quota, bus)


def _pro_owner_over_free(store: InMemoryStore) -> str:
    owner = store.add_profile("owner-x", tenant_id="tx")
    store.add_subscription(owner.identity, "pro")
    academy = store.add_academy("A", "tx", owner, name="Academy A")
    store.seed_resources(academy, ResourceType.ATHLETES, 60)
    return owner.identity


class TestChangePlan:
    @pytest.mark.asyncio
    async def test_blocked_without_force(self, catalog: PlanCatalog, store: InMemoryStore) -> None:
        identity = _pro_owner_over_free(store)
        outcome = await _changer(catalog, store, EventBus()).change_plan(identity, "free")

        assert isinstance(outcome, PlanLimitViolations)
        assert outcome.requires_action
        assert store.subscriptions[identity].plan_code == "pro"

    @pytest.mark.asyncio
    async def test_upgrade_applies(self, catalog: PlanCatalog, store: InMemoryStore) -> None:
        identity = _pro_owner_over_free(store)
        bus = EventBus()
        changed: list[PlanChanged] = []

        async def on_change(event: PlanChanged) -> None:
            changed.append(event)

        bus.subscribe(PlanChanged, on_change)
        outcome = await _changer(catalog, store, bus).change_plan(identity, "premium")
        await bus.drain()

        assert isinstance(outcome, PlanChangeApplied)
        assert outcome.old_plan == "pro"
        assert outcome.new_plan == PlanCode.PREMIUM
        assert outcome.forced_violations == ()
        assert store.subscriptions[identity].plan_code == "premium"
        assert [(e.old_plan, e.new_plan) for e in changed] == [("pro", "premium")]

    @pytest.mark.asyncio
    async def test_creates_subscription_when_absent(
        self, catalog: PlanCatalog, store: InMemoryStore,
    ) -> None:
        owner = store.add_profile("fresh", tenant_id="tf")
        outcome = await _changer(catalog, store, EventBus()).change_plan(owner.identity, "pro")
        assert isinstance(outcome, PlanChangeApplied)
        assert outcome.old_plan is None
        assert store.subscriptions["fresh"].plan_code == "pro"


class TestForcedDowngrade:
    @pytest.mark.asyncio
    async def test_enqueues_one_notification(
        self, catalog: PlanCatalog, store: InMemoryStore,
    ) -> None:
        identity = _pro_owner_over_free(store)
        bus = EventBus()
        queue = InMemoryNotificationQueue()
        register_default_handlers(bus, queue)

        outcome = await _changer(catalog, store, bus).change_plan(identity, "free", force=True)
        await bus.drain()

        assert isinstance(outcome, PlanChangeApplied)
        assert store.subscriptions[identity].plan_code == "free"
        assert len(queue.messages) == 1

        message = queue.messages[0]
        assert message["recipient"] == identity
        assert message["kind"] == "plan_downgrade_action_required"
        violation = message["payload"]["violations"][0]
        assert violation["resource"] == "athletes"
        assert violation["academy_id"] == "A"
        assert violation["to_remove"] == 10

    @pytest.mark.asyncio
    async def test_no_notification_without_violations(
        self, catalog: PlanCatalog, store: InMemoryStore,
    ) -> None:
        owner = store.add_profile("small", tenant_id="ts")
        store.add_subscription(owner.identity, "pro")
        store.add_academy("S", "ts", owner)
        bus = EventBus()
        queue = InMemoryNotificationQueue()
        register_default_handlers(bus, queue)

        await _changer(catalog, store, bus).change_plan(owner.identity, "free", force=True)
        await bus.drain()
        assert queue.messages == []

    @pytest.mark.asyncio
    async def test_handler_failure_isolated(
        self, catalog: PlanCatalog, store: InMemoryStore,
    ) -> None:
        identity = _pro_owner_over_free(store)
        bus = EventBus()
        queue = InMemoryNotificationQueue()

        async def broken(event: PlanDowngradeForced) -> None:
            raise RuntimeError("mailer down")

        bus.subscribe(PlanDowngradeForced, broken)
        register_default_handlers(bus, queue)

        outcome = await _changer(catalog, store, bus).change_plan(identity, "free", force=True)
        await bus.drain()

        assert isinstance(outcome, PlanChangeApplied)
        assert len(queue.messages) == 1
