"""Resource counter: on-demand counts of quota-bound resources."""

from __future__ import annotations

from typing import Union

from academy_guard.core.exceptions import InternalLookupError
from academy_guard.core.interfaces import QuotaTransaction, ResourceStore
from academy_guard.core.logging import get_logger
from academy_guard.core.types import ResourceType

log = get_logger(__name__)


class ResourceCounter:
    """Count resources of one type inside a scope.

    The scope is the academy id for athletes, coaches, classes and groups and
    the owner profile id for academies. Counts come from committed state only:
    either the store's committed view, or a quota transaction that holds the
    scope lock.
    """

    def __init__(self, source: Union[ResourceStore, QuotaTransaction]) -> None:
        self._source = source

    async def count(
        self,
        scope_id: str,
        resource_type: ResourceType,
        tenant_id: str | None = None,
    ) -> int:
        try:
            value = await self._source.count(scope_id, resource_type, tenant_id)
        except InternalLookupError:
            raise
        except Exception as exc:
            log.error(
                "resource_count_failed",
                resource=resource_type.value,
                error=str(exc),
            )
            raise InternalLookupError(
                "Resource count failed",
                context={"resource": resource_type.value},
            ) from exc
        return max(int(value or 0), 0)

    async def count_many(
        self,
        scope_id: str,
        resource_types: list[ResourceType],
        tenant_id: str | None = None,
    ) -> dict[ResourceType, int]:
        return {r: await self.count(scope_id, r, tenant_id) for r in resource_types}
