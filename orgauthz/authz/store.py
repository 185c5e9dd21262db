"""
Read interface the engine needs from the permission data store.

Implementations raise DataStoreUnavailableError for connection-level failures;
any other exception is treated as a lookup failure for the calling source.
"""

from __future__ import annotations

from typing import Protocol

from .types import OverrideRecord, OwnershipInfo


class PermissionStore(Protocol):
    async def find_override(self, actor_id: str, resource: str, action: str) -> OverrideRecord | None:
        """Non-expired override for (actor, resource, action), if any."""

    async def find_direct_grant(self, actor_id: str, resource: str, action: str) -> bool:
        """True when an active, granted direct permission exists."""

    async def find_role_grants(self, actor_id: str, resource: str, action: str) -> list[str | None]:
        """Scopes of granted permissions across all active roles the actor holds."""

    async def find_hierarchy_level0_role(self, actor_id: str) -> bool:
        """True when the actor actively holds an active role at hierarchy level 0."""

    async def resolve_ownership(self, kind: str, resource_id: str) -> OwnershipInfo | None:
        """Owner/department/school of a resource, None when it does not exist."""
