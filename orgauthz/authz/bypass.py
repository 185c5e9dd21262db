"""Top-level administrator (hierarchy level 0) bypass."""

from __future__ import annotations

import logging

from .cache import DecisionCache
from .errors import DataStoreUnavailableError
from .store import PermissionStore

logger = logging.getLogger(__name__)

BYPASS_REASON = "bypass: hierarchy level 0"


class BypassAuthorityCheck:
    """
    Answers "does this actor hold an active level-0 role?".

    Cached under its own key because it is invalidated by role membership
    changes, not by permission grants.
    """

    def __init__(self, store: PermissionStore, cache: DecisionCache) -> None:
        self._store = store
        self._cache = cache

    async def has_bypass(self, actor_id: str) -> bool:
        cached = await self._cache.get_bypass(actor_id)
        if cached is not None:
            return cached

        try:
            has_level0 = await self._store.find_hierarchy_level0_role(actor_id)
        except DataStoreUnavailableError:
            raise
        except Exception:
            logger.exception("Hierarchy level 0 lookup failed actor=%s; no bypass", actor_id)
            return False

        await self._cache.set_bypass(actor_id, has_level0)
        return has_level0
