"""
Decision cache.

Background:
    Resolving a decision costs several data-store round trips, so resolved
    decisions are memoized per (actor, resource, action, scope) for a short
    TTL. Grants change rarely but must take effect immediately, so every write
    that touches an actor's grants deletes that actor's keys by prefix:

        check:<actorId>:<resource>:<action>:<scope|none>    decision, 5 min
        hierarchy:level0:<actorId>                          bypass flag, 10 min

The storage is a small capability interface (get / set / delete / delete_prefix).
InMemoryCacheBackend serves single-process deployments; RedisCacheBackend is
needed when several instances must see the same invalidations.

The cache is strictly read-through: any backend failure behaves like a miss
(or a no-op for writes) so evaluation falls back to the sources.
"""

from __future__ import annotations

import bisect
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .errors import CacheUnavailableError
from .types import Decision, RequiredPermission

logger = logging.getLogger(__name__)

DEFAULT_DECISION_TTL_SECONDS = 300
DEFAULT_BYPASS_TTL_SECONDS = 600
DEFAULT_SWEEP_THRESHOLD = 10_000


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        ...


# ---- Backends ------------------------------------------------------------------------


class InMemoryCacheBackend:
    """
    Process-local map with TTL expiry and a sorted key index.

    The sorted index turns prefix deletion into a bisect plus a contiguous
    slice instead of a scan over every key. Expired entries are dropped when
    read, and swept in bulk whenever the map grows past `sweep_threshold`.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        *,
        sweep_threshold: int = DEFAULT_SWEEP_THRESHOLD,
    ) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._index: list[str] = []
        self._sweep_threshold = sweep_threshold
        self._next_sweep = sweep_threshold

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._remove(key)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if key not in self._entries:
            if len(self._entries) >= self._next_sweep:
                self.purge_expired()
            bisect.insort(self._index, key)
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._remove(key)

    async def delete_prefix(self, prefix: str) -> int:
        start = bisect.bisect_left(self._index, prefix)
        end = start
        while end < len(self._index) and self._index[end].startswith(prefix):
            end += 1
        for key in self._index[start:end]:
            del self._entries[key]
        del self._index[start:end]
        return end - start

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = {key for key, (_value, expires_at) in self._entries.items() if now >= expires_at}
        if expired:
            for key in expired:
                del self._entries[key]
            self._index = [key for key in self._index if key not in expired]
        # Next sweep once the map doubles past its live size.
        self._next_sweep = max(self._sweep_threshold, 2 * len(self._entries))
        logger.debug("Swept expired cache entries removed=%s live=%s", len(expired), len(self._entries))
        return len(expired)

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)
        pos = bisect.bisect_left(self._index, key)
        if pos < len(self._index) and self._index[pos] == key:
            del self._index[pos]


def _escape_glob(text: str) -> str:
    for ch in ("\\", "*", "?", "[", "]"):
        text = text.replace(ch, "\\" + ch)
    return text


class RedisCacheBackend:
    """Shared cache on Redis; values are stored as JSON."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheBackend:
        client = aioredis.Redis.from_url(
            url,
            socket_connect_timeout=2,
            socket_timeout=2,
            decode_responses=True,
        )
        return cls(client)

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            raise CacheUnavailableError(f"redis get failed for {key}") from exc
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, json.dumps(value), ex=ttl_seconds)
        except RedisError as exc:
            raise CacheUnavailableError(f"redis set failed for {key}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise CacheUnavailableError(f"redis delete failed for {key}") from exc

    async def delete_prefix(self, prefix: str) -> int:
        try:
            keys = [key async for key in self._client.scan_iter(match=f"{_escape_glob(prefix)}*")]
            if keys:
                await self._client.delete(*keys)
        except RedisError as exc:
            raise CacheUnavailableError(f"redis delete failed for prefix {prefix}") from exc
        return len(keys)

    async def close(self) -> None:
        await self._client.aclose()


# ---- Decision cache ------------------------------------------------------------------


class DecisionCache:
    def __init__(
        self,
        backend: CacheBackend,
        *,
        decision_ttl_seconds: int = DEFAULT_DECISION_TTL_SECONDS,
        bypass_ttl_seconds: int = DEFAULT_BYPASS_TTL_SECONDS,
    ) -> None:
        self._backend = backend
        self.decision_ttl_seconds = decision_ttl_seconds
        self.bypass_ttl_seconds = bypass_ttl_seconds

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @staticmethod
    def decision_key(actor_id: str, required: RequiredPermission) -> str:
        return f"check:{actor_id}:{required.resource}:{required.action}:{required.scope or 'none'}"

    @staticmethod
    def bypass_key(actor_id: str) -> str:
        return f"hierarchy:level0:{actor_id}"

    async def get_decision(self, actor_id: str, required: RequiredPermission) -> Decision | None:
        key = self.decision_key(actor_id, required)
        raw = await self._safe_get(key)
        if raw is None:
            logger.debug("Decision cache miss key=%s", key)
            return None
        try:
            decision = Decision.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding malformed cached decision key=%s", key)
            return None
        logger.debug("Decision cache hit key=%s", key)
        return decision

    async def set_decision(
        self,
        actor_id: str,
        required: RequiredPermission,
        decision: Decision,
        ttl_seconds: int | None = None,
    ) -> None:
        ttl = self.decision_ttl_seconds if ttl_seconds is None else min(ttl_seconds, self.decision_ttl_seconds)
        await self._safe_set(self.decision_key(actor_id, required), decision.to_dict(), ttl)

    async def get_bypass(self, actor_id: str) -> bool | None:
        raw = await self._safe_get(self.bypass_key(actor_id))
        if raw is None:
            return None
        return bool(raw)

    async def set_bypass(self, actor_id: str, value: bool) -> None:
        await self._safe_set(self.bypass_key(actor_id), value, self.bypass_ttl_seconds)

    async def invalidate(self, actor_id: str) -> int:
        """Drop every cached decision of one actor."""
        removed = await self._safe_delete_prefix(f"check:{actor_id}:")
        logger.debug("Invalidated decision cache actor=%s keys=%s", actor_id, removed)
        return removed

    async def invalidate_bypass(self, actor_id: str) -> None:
        key = self.bypass_key(actor_id)
        try:
            await self._backend.delete(key)
        except Exception:
            logger.error("Cache delete failed key=%s", key, exc_info=True)

    async def invalidate_all(self) -> int:
        """Drop every cached decision and bypass flag (role/permission definition changed)."""
        removed = await self._safe_delete_prefix("check:")
        removed += await self._safe_delete_prefix("hierarchy:")
        logger.debug("Invalidated all decision cache keys=%s", removed)
        return removed

    async def _safe_get(self, key: str) -> Any | None:
        try:
            return await self._backend.get(key)
        except Exception:
            logger.error("Cache get failed key=%s; evaluating without cache", key, exc_info=True)
            return None

    async def _safe_set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._backend.set(key, value, ttl_seconds)
        except Exception:
            logger.error("Cache set failed key=%s", key, exc_info=True)

    async def _safe_delete_prefix(self, prefix: str) -> int:
        try:
            return await self._backend.delete_prefix(prefix)
        except Exception:
            logger.error("Cache invalidation failed prefix=%s", prefix, exc_info=True)
            return 0
