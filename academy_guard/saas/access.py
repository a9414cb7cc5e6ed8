"""Access verifier: tenant ownership checks for academies and groups.

A resource that belongs to another tenant is reported exactly like a missing
one (``*_NOT_FOUND``), so callers can never probe for existence across tenant
boundaries. Every check returns an ``AccessResult``; nothing here raises for
a denied access.
"""

from __future__ import annotations

from academy_guard.core.interfaces import DirectoryStore
from academy_guard.core.logging import get_logger
from academy_guard.core.types import AccessReason, AccessResult

log = get_logger(__name__)


class AccessVerifier:
    """Read-only, idempotent ownership checks."""

    def __init__(self, directory: DirectoryStore) -> None:
        self._directory = directory

    async def verify_academy_access(
        self,
        academy_id: str,
        tenant_id: str | None,
        *,
        bypass_tenant: bool = False,
    ) -> AccessResult:
        """Allow when the academy exists and belongs to ``tenant_id``.

        ``bypass_tenant`` skips the tenant match and is only passed by the
        super-admin gate; a missing academy is still ``ACADEMY_NOT_FOUND``.
        """
        if not tenant_id and not bypass_tenant:
            return AccessResult.deny(AccessReason.ACADEMY_ACCESS_DENIED)

        academy = await self._directory.get_academy(academy_id)
        if academy is None:
            return AccessResult.deny(AccessReason.ACADEMY_NOT_FOUND)

        if not bypass_tenant and academy.tenant_id != tenant_id:
            log.warning(
                "cross_tenant_academy_access",
                academy_id=academy_id,
                caller_tenant=tenant_id,
            )
            return AccessResult.deny(AccessReason.ACADEMY_NOT_FOUND)

        return AccessResult.allow()

    async def verify_group_access(
        self,
        group_id: str,
        tenant_id: str | None,
        academy_id: str | None = None,
        *,
        bypass_tenant: bool = False,
    ) -> AccessResult:
        """Allow when the group belongs to ``tenant_id`` (and ``academy_id`` if given)."""
        if not tenant_id and not bypass_tenant:
            return AccessResult.deny(AccessReason.ACADEMY_ACCESS_DENIED)

        group = await self._directory.get_group(group_id)
        if group is None:
            return AccessResult.deny(AccessReason.GROUP_NOT_FOUND)

        if not bypass_tenant and group.tenant_id != tenant_id:
            log.warning(
                "cross_tenant_group_access",
                group_id=group_id,
                caller_tenant=tenant_id,
            )
            return AccessResult.deny(AccessReason.GROUP_NOT_FOUND)

        if academy_id is not None and group.academy_id != academy_id:
            return AccessResult.deny(AccessReason.GROUP_NOT_FOUND)

        return AccessResult.allow()
