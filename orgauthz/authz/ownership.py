"""
Scope-based ownership check.

Last resort after every permission source returned not-applicable: a request
scoped to OWN / DEPARTMENT / SCHOOL is allowed when the target resource sits
inside the actor's own boundary at that level.

Resource types map to resolver kinds through static configuration, e.g.

    ownership:
      user: user
      userprofile: user
      department: department

Types without a mapping have no ownership predicate and always fail closed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from .errors import DataStoreUnavailableError
from .scopes import Scope
from .store import PermissionStore
from .types import Actor, OwnershipInfo, SourceResult

logger = logging.getLogger(__name__)

RESOLVER_KINDS = frozenset({"user", "department", "position", "school"})

NO_RESOURCE_ID_REASON = "no resource id for scope check"


class ScopeOwnershipChecker:
    def __init__(self, mapping: Mapping[str, str] | None = None) -> None:
        self._mapping = {k.lower(): v.lower() for k, v in (mapping or {}).items()}

    def resolver_kind(self, resource: str) -> str | None:
        kind = self._mapping.get(resource.lower())
        if kind not in RESOLVER_KINDS:
            return None
        return kind

    async def check(
        self,
        store: PermissionStore,
        actor: Actor,
        resource: str,
        scope: Scope,
        resource_id: str | None,
    ) -> SourceResult:
        """
        ALLOW when the ownership predicate for `scope` holds.

        Returns not-applicable when it does not hold, and a DENY carrying
        NO_RESOURCE_ID_REASON when there is nothing to check against.
        """

        if scope is Scope.ALL:
            return SourceResult.allow("Allowed by ALL scope", cacheable=False)

        if not resource_id:
            return SourceResult.deny(NO_RESOURCE_ID_REASON, cacheable=False)

        kind = self.resolver_kind(resource)
        if kind is None:
            logger.debug("No ownership resolver for resource=%s", resource)
            return SourceResult.not_applicable()

        try:
            info = await store.resolve_ownership(kind, resource_id)
        except DataStoreUnavailableError:
            raise
        except Exception:
            logger.exception("Ownership lookup failed kind=%s id=%s", kind, resource_id)
            return SourceResult.not_applicable()

        if info is not None and _holds(scope, actor, info):
            return SourceResult.allow(f"Allowed by {scope.value} scope", cacheable=False)
        return SourceResult.not_applicable()


def _holds(scope: Scope, actor: Actor, info: OwnershipInfo) -> bool:
    if scope is Scope.OWN:
        return info.owner_id is not None and info.owner_id == actor.id
    if scope is Scope.DEPARTMENT:
        return actor.department_id is not None and info.department_id == actor.department_id
    if scope is Scope.SCHOOL:
        return actor.school_id is not None and info.school_id == actor.school_id
    return False
