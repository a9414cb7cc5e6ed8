"""Tests for ResourceCounter."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from academy_guard.core.exceptions import InternalLookupError
from academy_guard.core.types import ResourceType
from academy_guard.db.memory import InMemoryStore
from academy_guard.saas.counter import ResourceCounter


class TestResourceCounter:
    @pytest.mark.asyncio
    async def test_counts_per_academy(self, store: InMemoryStore) -> None:
        owner = store.add_profile("owner-a", tenant_id="t1")
        a1 = store.add_academy("a1", "t1", owner)
        a2 = store.add_academy("a2", "t1", owner)
        store.seed_resources(a1, ResourceType.ATHLETES, 4)
        store.seed_resources(a2, ResourceType.ATHLETES, 2)

        counter = ResourceCounter(store)
        assert await counter.count("a1", ResourceType.ATHLETES) == 4
        assert await counter.count("a2", ResourceType.ATHLETES) == 2

    @pytest.mark.asyncio
    async def test_groups_and_academies(self, store: InMemoryStore) -> None:
        owner = store.add_profile("owner-a", tenant_id="t1")
        a1 = store.add_academy("a1", "t1", owner)
        store.add_academy("a2", "t1", owner)
        store.seed_resources(a1, ResourceType.GROUPS, 3)

        counter = ResourceCounter(store)
        assert await counter.count("a1", ResourceType.GROUPS) == 3
        assert await counter.count(owner.profile_id, ResourceType.ACADEMIES) == 2

    @pytest.mark.asyncio
    async def test_tenant_filter(self, store: InMemoryStore) -> None:
        owner = store.add_profile("owner-a", tenant_id="t1")
        a1 = store.add_academy("a1", "t1", owner)
        store.seed_resources(a1, ResourceType.CLASSES, 2)

        counter = ResourceCounter(store)
        assert await counter.count("a1", ResourceType.CLASSES, "t1") == 2
        assert await counter.count("a1", ResourceType.CLASSES, "other") == 0

    @pytest.mark.asyncio
    async def test_empty_scope_is_zero(self, store: InMemoryStore) -> None:
        assert await ResourceCounter(store).count("nope", ResourceType.COACHES) == 0

    @pytest.mark.asyncio
    async def test_negative_or_none_clamped(self) -> None:
        source = AsyncMock()
        source.count.return_value = None
        assert await ResourceCounter(source).count("a1", ResourceType.ATHLETES) == 0
        source.count.return_value = -3
        assert await ResourceCounter(source).count("a1", ResourceType.ATHLETES) == 0

    @pytest.mark.asyncio
    async def test_storage_failure_escalates(self) -> None:
        source = AsyncMock()
        source.count.side_effect = ConnectionError("db down")
        with pytest.raises(InternalLookupError):
            await ResourceCounter(source).count("a1", ResourceType.ATHLETES)

    @pytest.mark.asyncio
    async def test_count_many(self, store: InMemoryStore) -> None:
        owner = store.add_profile("owner-a", tenant_id="t1")
        a1 = store.add_academy("a1", "t1", owner)
        store.seed_resources(a1, ResourceType.COACHES, 1)
        store.seed_resources(a1, ResourceType.CLASSES, 2)

        counts = await ResourceCounter(store).count_many(
            "a1", [ResourceType.COACHES, ResourceType.CLASSES],
        )
        assert counts == {ResourceType.COACHES: 1, ResourceType.CLASSES: 2}
