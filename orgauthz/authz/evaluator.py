"""
Policy evaluator.

Resolves a list of required (resource, action, scope) tuples for one actor.
The request is allowed only when every tuple is allowed.

Per tuple:
    1. bypass check (hierarchy level 0)      -> ALLOW
    2. decision cache                        -> cached decision
    3. sources in fixed order, first definitive answer wins
       override -> direct grant -> role grant -> position
    4. ownership fallback for OWN / DEPARTMENT / SCHOOL requests
    5. DENY "no permission for <resource>:<action>"

Resolved decisions are cached unless they depend on something outside the
cache key. Each tuple's outcome is handed to the recorder without awaiting it.

This module is pure Python and has no FastAPI dependency.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone

from .bypass import BYPASS_REASON, BypassAuthorityCheck
from .cache import DecisionCache
from .errors import DataStoreUnavailableError, EvaluationUnavailableError
from .ownership import ScopeOwnershipChecker
from .recorder import DecisionRecorder
from .scopes import Scope
from .sources import DEFAULT_SOURCES, PermissionSource
from .store import PermissionStore
from .types import Actor, Decision, DecisionEvent, EvaluationResult, RequestValues, RequiredPermission

logger = logging.getLogger(__name__)


def _epoch_seconds(value: datetime) -> float:
    # Store datetimes are naive UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def no_permission_reason(required: RequiredPermission) -> str:
    return f"no permission for {required.label}"


class PolicyEvaluator:
    """
    Usage:
        evaluator = PolicyEvaluator(store, cache, ownership=checker, recorder=recorder)
        result = await evaluator.evaluate(actor, [RequiredPermission("department", "UPDATE", "DEPARTMENT")])
        if not result.allowed:
            raise Forbidden(result.denial_message)
    """

    def __init__(
        self,
        store: PermissionStore,
        cache: DecisionCache,
        *,
        ownership: ScopeOwnershipChecker | None = None,
        recorder: DecisionRecorder | None = None,
        sources: Sequence[PermissionSource] = DEFAULT_SOURCES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cache = cache
        self._ownership = ownership or ScopeOwnershipChecker()
        self._recorder = recorder
        self._sources = tuple(sources)
        self._clock = clock
        self._bypass = BypassAuthorityCheck(store, cache)

    # ---- Main decision API ----------------------------------------------------------

    async def evaluate(
        self,
        actor: Actor,
        required_permissions: Iterable[RequiredPermission],
        request_values: RequestValues | None = None,
    ) -> EvaluationResult:
        required = tuple(required_permissions)
        if not required:
            return EvaluationResult(allowed=True)

        try:
            if await self._bypass.has_bypass(actor.id):
                logger.debug("Actor %s has hierarchy level 0; bypassing permission checks", actor.id)
                decisions = tuple((item, Decision(True, BYPASS_REASON)) for item in required)
            else:
                decisions = tuple([(item, await self._resolve(actor, item, request_values)) for item in required])
        except DataStoreUnavailableError as exc:
            logger.error("Permission data store unavailable actor=%s: %s", actor.id, exc)
            raise EvaluationUnavailableError("permission data store unavailable") from exc

        denied_reasons: list[str] = []
        for _item, decision in decisions:
            if not decision.allowed and decision.reason not in denied_reasons:
                denied_reasons.append(decision.reason)

        result = EvaluationResult(
            allowed=not denied_reasons,
            denied_reasons=tuple(denied_reasons),
            decisions=decisions,
        )
        if not result.allowed:
            logger.warning(
                "Permission denied actor=%s failed=%s reasons=%s",
                actor.id,
                [item.label for item in result.failed],
                result.denial_message,
            )

        self._record(actor, decisions)
        return result

    async def invalidate_user_cache(self, actor_id: str) -> None:
        await self._cache.invalidate(actor_id)

    async def invalidate_all_cache(self) -> None:
        await self._cache.invalidate_all()

    # ---- Per-tuple resolution -------------------------------------------------------

    async def _resolve(
        self,
        actor: Actor,
        required: RequiredPermission,
        request_values: RequestValues | None,
    ) -> Decision:
        cached = await self._cache.get_decision(actor.id, required)
        if cached is not None:
            return cached

        decision = await self._evaluate_sources(actor, required, request_values)
        if not decision.cacheable:
            return decision

        if decision.valid_until is None:
            await self._cache.set_decision(actor.id, required, decision)
            return decision

        # A time-bounded override must not be served from cache past its expiry.
        remaining = int(_epoch_seconds(decision.valid_until) - self._clock())
        if remaining > 0:
            await self._cache.set_decision(actor.id, required, decision, ttl_seconds=remaining)
        return decision

    async def _evaluate_sources(
        self,
        actor: Actor,
        required: RequiredPermission,
        request_values: RequestValues | None,
    ) -> Decision:
        for source in self._sources:
            result = await source.check(self._store, actor, required)
            if result.is_definitive:
                return result.to_decision()

        scope = Scope.parse(required.scope)
        # ALL carries no ownership boundary to confine to; it needs an explicit grant.
        if scope is None or scope is Scope.ALL:
            return Decision(False, no_permission_reason(required))

        resource_id = request_values.resource_id(required.resource) if request_values else None
        result = await self._ownership.check(self._store, actor, required.resource, scope, resource_id)
        if result.is_definitive:
            return result.to_decision()
        return Decision(False, no_permission_reason(required), cacheable=False)

    # ---- Audit ----------------------------------------------------------------------

    def _record(self, actor: Actor, decisions: Iterable[tuple[RequiredPermission, Decision]]) -> None:
        if self._recorder is None:
            return
        timestamp_ms = int(self._clock() * 1000)
        for required, decision in decisions:
            event = DecisionEvent(
                actor_id=actor.id,
                resource=required.resource,
                action=required.action,
                scope=required.scope,
                allowed=decision.allowed,
                reason=decision.reason,
                timestamp_ms=timestamp_ms,
            )
            try:
                self._recorder.record(event)
            except Exception:
                logger.exception("Decision recorder failed actor=%s permission=%s", actor.id, required.label)
