"""Abstract base classes for the storage and delivery collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any

from academy_guard.core.types import (
    Academy,
    AuditEntry,
    Group,
    Membership,
    Profile,
    ResourceType,
    Subscription,
)


class DirectoryStore(ABC):
    """Profiles, memberships, academies, groups and subscriptions."""

    @abstractmethod
    async def get_profile(self, profile_id: str) -> Profile | None: ...

    @abstractmethod
    async def get_profile_by_identity(self, identity: str) -> Profile | None: ...

    @abstractmethod
    async def update_profile(self, profile_id: str, changes: dict[str, Any]) -> Profile: ...

    @abstractmethod
    async def get_membership(self, identity: str, academy_id: str) -> Membership | None: ...

    @abstractmethod
    async def get_academy(self, academy_id: str) -> Academy | None: ...

    @abstractmethod
    async def list_owned_academies(self, owner_profile_id: str) -> list[Academy]: ...

    @abstractmethod
    async def get_group(self, group_id: str) -> Group | None: ...

    @abstractmethod
    async def get_active_subscription(self, identity: str) -> Subscription | None: ...

    @abstractmethod
    async def set_subscription_plan(self, identity: str, plan_code: str) -> Subscription:
        """Point the identity's subscription at ``plan_code``, creating it if absent."""
        ...


class QuotaTransaction(ABC):
    """Unit of work holding the storage lock on one quota scope.

    ``count`` sees every committed row plus the writes of this transaction;
    rows inserted here become visible to other readers only on commit.
    """

    @abstractmethod
    async def count(
        self, scope_id: str, resource_type: ResourceType, tenant_id: str | None = None,
    ) -> int: ...

    @abstractmethod
    async def insert(self, resource_type: ResourceType, values: dict[str, Any]) -> str: ...


class ResourceStore(ABC):
    """Quota-bound resource rows."""

    @abstractmethod
    async def count(
        self, scope_id: str, resource_type: ResourceType, tenant_id: str | None = None,
    ) -> int:
        """Count committed rows of ``resource_type`` in the scope."""
        ...

    @abstractmethod
    def quota_scope(
        self, resource_type: ResourceType, scope_id: str,
    ) -> AbstractAsyncContextManager[QuotaTransaction]:
        """Open a transaction that serializes creators of the same scope."""
        ...


class AuditLogStore(ABC):
    """Append-only audit log; exposes no update or delete."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None: ...

    @abstractmethod
    async def recent(self, limit: int = 100, actor_identity: str | None = None) -> list[AuditEntry]: ...


class NotificationDispatcher(ABC):
    """Outbound notification queue consumed outside this engine."""

    @abstractmethod
    async def enqueue(self, recipient_identity: str, kind: str, payload: dict[str, Any]) -> None: ...
