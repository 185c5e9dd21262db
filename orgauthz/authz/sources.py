"""
Permission source readers.

Each reader answers a single question against the data store and returns a
tri-state SourceResult. The evaluator walks DEFAULT_SOURCES in order and stops
at the first definitive answer:

    1. OverrideSource     per-actor, time-bounded; can grant or deny
    2. DirectGrantSource  direct user permission; not scope filtered
    3. RoleGrantSource    permissions of active roles; scope narrowed
    4. PositionSource     position inheritance; not implemented yet

Lookup errors are converted to a DENY for that source here. Data-store
unavailability is the exception: it propagates so the caller can tell an
outage apart from a denial.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .errors import DataStoreUnavailableError
from .scopes import is_scope_sufficient
from .store import PermissionStore
from .types import Actor, RequiredPermission, SourceResult

logger = logging.getLogger(__name__)


class PermissionSource(Protocol):
    name: str

    async def check(self, store: PermissionStore, actor: Actor, required: RequiredPermission) -> SourceResult:
        ...


class _GuardedSource:
    """Base for readers: turns unexpected lookup errors into a non-cacheable DENY."""

    name = "source"

    async def check(self, store: PermissionStore, actor: Actor, required: RequiredPermission) -> SourceResult:
        try:
            return await self._check(store, actor, required)
        except DataStoreUnavailableError:
            raise
        except Exception:
            logger.exception(
                "Permission lookup failed source=%s actor=%s permission=%s",
                self.name,
                actor.id,
                required.label,
            )
            return SourceResult.deny(f"lookup failed for {self.name}", cacheable=False)

    async def _check(self, store: PermissionStore, actor: Actor, required: RequiredPermission) -> SourceResult:
        raise NotImplementedError


class OverrideSource(_GuardedSource):
    name = "user override"

    async def _check(self, store: PermissionStore, actor: Actor, required: RequiredPermission) -> SourceResult:
        override = await store.find_override(actor.id, required.resource, required.action)
        if override is None:
            return SourceResult.not_applicable()
        if override.is_granted:
            return SourceResult.allow("Allowed by user override", valid_until=override.valid_until)
        return SourceResult.deny(f"Denied by user override for {required.label}", valid_until=override.valid_until)


class DirectGrantSource(_GuardedSource):
    name = "direct user permission"

    async def _check(self, store: PermissionStore, actor: Actor, required: RequiredPermission) -> SourceResult:
        # Direct grants are already scoped by being assigned to this actor.
        if await store.find_direct_grant(actor.id, required.resource, required.action):
            return SourceResult.allow("Allowed by direct user permission")
        return SourceResult.not_applicable()


class RoleGrantSource(_GuardedSource):
    name = "role permission"

    async def _check(self, store: PermissionStore, actor: Actor, required: RequiredPermission) -> SourceResult:
        grant_scopes = await store.find_role_grants(actor.id, required.resource, required.action)
        for grant_scope in grant_scopes:
            if required.scope is None or grant_scope is None:
                return SourceResult.allow("Allowed by role permission")
            if is_scope_sufficient(grant_scope, required.scope):
                return SourceResult.allow("Allowed by role permission")
        return SourceResult.not_applicable()


class PositionSource(_GuardedSource):
    """
    Position-derived permissions.

    The data model anticipates positions inheriting permissions (including
    from parent positions); until that exists this reader never decides.
    """

    name = "position permission"

    async def _check(self, store: PermissionStore, actor: Actor, required: RequiredPermission) -> SourceResult:
        return SourceResult.not_applicable()


DEFAULT_SOURCES: tuple[PermissionSource, ...] = (
    OverrideSource(),
    DirectGrantSource(),
    RoleGrantSource(),
    PositionSource(),
)
