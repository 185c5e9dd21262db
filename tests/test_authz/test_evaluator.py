"""
Tests for PolicyEvaluator.

The store is FakePermissionStore (see conftest.py), which counts lookups so
cache behaviour can be asserted without timing.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from orgauthz.authz.bypass import BYPASS_REASON
from orgauthz.authz.cache import DecisionCache, InMemoryCacheBackend
from orgauthz.authz.errors import EvaluationUnavailableError
from orgauthz.authz.evaluator import PolicyEvaluator
from orgauthz.authz.ownership import NO_RESOURCE_ID_REASON, ScopeOwnershipChecker
from orgauthz.authz.types import Actor, OwnershipInfo, RequestValues, RequiredPermission

OWNERSHIP = {"user": "user", "department": "department"}


class ListRecorder:
    def __init__(self) -> None:
        self.events = []

    def record(self, event) -> None:
        self.events.append(event)


class ExplodingRecorder:
    def record(self, event) -> None:
        raise RuntimeError("audit sink gone")


def make_evaluator(store, cache, **kwargs):
    kwargs.setdefault("ownership", ScopeOwnershipChecker(OWNERSHIP))
    return PolicyEvaluator(store, cache, **kwargs)


# ---- Reference scenarios -----------------------------------------------------------


@pytest.mark.asyncio
async def test_school_role_grant_covers_department_request(store, cache, actor):
    store.grant_role("7", "department", "UPDATE", "SCHOOL")

    result = await make_evaluator(store, cache).evaluate(actor, [RequiredPermission("department", "UPDATE", "DEPARTMENT")])

    assert result.allowed is True
    assert result.decisions[0][1].reason == "Allowed by role permission"


@pytest.mark.asyncio
async def test_school_role_grant_does_not_cover_all_request(store, cache, actor):
    store.grant_role("7", "department", "UPDATE", "SCHOOL")

    result = await make_evaluator(store, cache).evaluate(
        actor,
        [RequiredPermission("department", "UPDATE", "ALL")],
        RequestValues(path_params={"id": "10"}),
    )

    assert result.allowed is False
    assert "no permission for department:UPDATE" in result.denial_message


@pytest.mark.asyncio
async def test_denying_override_beats_role_grant(store, cache):
    store.set_override("2", "role", "DELETE", False)
    store.grant_role("2", "role", "DELETE", "ALL")

    result = await make_evaluator(store, cache).evaluate(Actor(id="2"), [RequiredPermission("role", "DELETE", "ALL")])

    assert result.allowed is False
    assert result.denied_reasons == ("Denied by user override for role:DELETE",)


# ---- Precedence --------------------------------------------------------------------


@pytest.mark.asyncio
async def test_granting_override_allows_without_other_grants(store, cache, actor):
    store.set_override("7", "report", "EXPORT", True)

    result = await make_evaluator(store, cache).evaluate(actor, [RequiredPermission("report", "EXPORT", "ALL")])

    assert result.allowed is True
    assert store.calls["find_direct_grant"] == 0
    assert store.calls["find_role_grants"] == 0


@pytest.mark.asyncio
async def test_direct_grant_checked_before_roles(store, cache, actor):
    store.grant_direct("7", "audit", "READ")

    result = await make_evaluator(store, cache).evaluate(actor, [RequiredPermission("audit", "READ", "ALL")])

    assert result.decisions[0][1].reason == "Allowed by direct user permission"
    assert store.calls["find_role_grants"] == 0


@pytest.mark.asyncio
async def test_nothing_matches_denies_with_generic_reason(store, cache, actor):
    result = await make_evaluator(store, cache).evaluate(actor, [RequiredPermission("audit", "READ", "ALL")])

    assert result.allowed is False
    assert result.denied_reasons == ("no permission for audit:READ",)


@pytest.mark.asyncio
async def test_all_tuples_must_pass(store, cache, actor):
    store.grant_role("7", "department", "READ", "SCHOOL")

    result = await make_evaluator(store, cache).evaluate(
        actor,
        [RequiredPermission("department", "READ", "SCHOOL"), RequiredPermission("role", "UPDATE", "ALL")],
    )

    assert result.allowed is False
    assert result.failed == (RequiredPermission("role", "UPDATE", "ALL"),)
    assert result.denial_message == "no permission for role:UPDATE"


@pytest.mark.asyncio
async def test_empty_requirement_list_is_allowed(store, cache, actor):
    result = await make_evaluator(store, cache).evaluate(actor, [])

    assert result.allowed is True
    assert store.total_calls == 0


@pytest.mark.asyncio
async def test_denial_reasons_are_deduplicated(store, cache, actor):
    store.set_override("7", "role", "DELETE", False)

    result = await make_evaluator(store, cache).evaluate(
        actor,
        [RequiredPermission("role", "DELETE", "ALL"), RequiredPermission("role", "DELETE", "SCHOOL")],
    )

    assert result.denied_reasons == ("Denied by user override for role:DELETE",)


# ---- Bypass ------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_level0_actor_bypasses_even_a_denying_override(store, cache):
    store.level0.add("1")
    store.set_override("1", "role", "DELETE", False)

    result = await make_evaluator(store, cache).evaluate(
        Actor(id="1"),
        [RequiredPermission("role", "DELETE", "ALL"), RequiredPermission("anything", "READ")],
    )

    assert result.allowed is True
    assert {decision.reason for _item, decision in result.decisions} == {BYPASS_REASON}
    assert store.calls["find_override"] == 0


@pytest.mark.asyncio
async def test_bypass_flag_is_cached(store, cache, actor):
    evaluator = make_evaluator(store, cache)
    await evaluator.evaluate(actor, [RequiredPermission("audit", "READ")])
    await evaluator.evaluate(actor, [RequiredPermission("audit", "READ")])

    assert store.calls["find_hierarchy_level0_role"] == 1


# ---- Caching -----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_repeated_evaluation_is_served_from_cache(store, cache, actor):
    store.grant_role("7", "department", "UPDATE", "SCHOOL")
    evaluator = make_evaluator(store, cache)
    required = [RequiredPermission("department", "UPDATE", "DEPARTMENT")]

    first = await evaluator.evaluate(actor, required)
    calls_after_first = store.total_calls
    second = await evaluator.evaluate(actor, required)

    assert first.allowed == second.allowed
    assert first.denied_reasons == second.denied_reasons
    assert store.total_calls == calls_after_first


@pytest.mark.asyncio
async def test_denial_is_cached_until_invalidated(store, cache, actor):
    evaluator = make_evaluator(store, cache)
    required = [RequiredPermission("role", "UPDATE", "ALL")]

    assert (await evaluator.evaluate(actor, required)).allowed is False

    store.grant_role("7", "role", "UPDATE", "ALL")
    assert (await evaluator.evaluate(actor, required)).allowed is False

    await evaluator.invalidate_user_cache("7")
    assert (await evaluator.evaluate(actor, required)).allowed is True


@pytest.mark.asyncio
async def test_invalidating_one_actor_keeps_others_cached(store, cache, actor):
    other = Actor(id="70")
    evaluator = make_evaluator(store, cache)
    required = [RequiredPermission("role", "UPDATE", "ALL")]
    await evaluator.evaluate(actor, required)
    await evaluator.evaluate(other, required)

    await evaluator.invalidate_user_cache("7")

    assert await cache.get_decision("7", required[0]) is None
    assert await cache.get_decision("70", required[0]) is not None


@pytest.mark.asyncio
async def test_invalidate_all_forces_fresh_lookups(store, cache, actor):
    evaluator = make_evaluator(store, cache)
    required = [RequiredPermission("role", "UPDATE", "ALL")]
    await evaluator.evaluate(actor, required)

    await evaluator.invalidate_all_cache()
    before = store.calls["find_role_grants"]
    await evaluator.evaluate(actor, required)

    assert store.calls["find_role_grants"] == before + 1


@pytest.mark.asyncio
async def test_evaluation_works_with_cache_down(store, broken_cache, actor):
    store.grant_role("7", "department", "READ", "SCHOOL")

    result = await make_evaluator(store, broken_cache).evaluate(actor, [RequiredPermission("department", "READ", "SCHOOL")])

    assert result.allowed is True


# ---- Ownership fallback ------------------------------------------------------------


@pytest.mark.asyncio
async def test_own_scope_falls_back_to_ownership(store, cache, actor):
    store.ownership[("user", "7")] = OwnershipInfo(owner_id="7", department_id="10", school_id="1")

    result = await make_evaluator(store, cache).evaluate(
        actor,
        [RequiredPermission("user", "READ", "OWN")],
        RequestValues(path_params={"id": "7"}),
    )

    assert result.allowed is True
    assert result.decisions[0][1].reason == "Allowed by OWN scope"


@pytest.mark.asyncio
async def test_ownership_decisions_depend_on_resource_id(store, cache, actor):
    store.ownership[("user", "7")] = OwnershipInfo(owner_id="7")
    store.ownership[("user", "8")] = OwnershipInfo(owner_id="8")
    evaluator = make_evaluator(store, cache)
    required = [RequiredPermission("user", "READ", "OWN")]

    mine = await evaluator.evaluate(actor, required, RequestValues(path_params={"id": "7"}))
    theirs = await evaluator.evaluate(actor, required, RequestValues(path_params={"id": "8"}))

    assert mine.allowed is True
    assert theirs.allowed is False
    assert theirs.denied_reasons == ("no permission for user:READ",)


@pytest.mark.asyncio
async def test_resource_id_from_body_and_query(store, cache, actor):
    store.ownership[("department", "10")] = OwnershipInfo(department_id="10", school_id="1")
    evaluator = make_evaluator(store, cache)
    required = [RequiredPermission("department", "UPDATE", "DEPARTMENT")]

    from_body = await evaluator.evaluate(actor, required, RequestValues(body={"departmentId": 10}))
    from_query = await evaluator.evaluate(actor, required, RequestValues(query={"department_id": "10"}))

    assert from_body.allowed is True
    assert from_query.allowed is True


@pytest.mark.asyncio
async def test_scoped_request_without_resource_id_reports_it(store, cache, actor):
    result = await make_evaluator(store, cache).evaluate(actor, [RequiredPermission("department", "UPDATE", "DEPARTMENT")])

    assert result.allowed is False
    assert result.denied_reasons == (NO_RESOURCE_ID_REASON,)


@pytest.mark.asyncio
async def test_unscoped_request_never_uses_ownership(store, cache, actor):
    store.ownership[("user", "7")] = OwnershipInfo(owner_id="7")

    result = await make_evaluator(store, cache).evaluate(
        actor,
        [RequiredPermission("user", "READ")],
        RequestValues(path_params={"id": "7"}),
    )

    assert result.allowed is False
    assert store.calls["resolve_ownership"] == 0


# ---- Monotonicity ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_adding_a_role_grant_never_turns_allow_into_deny(store, cache, actor):
    required = [RequiredPermission("department", "READ", "DEPARTMENT")]
    store.grant_role("7", "department", "READ", "DEPARTMENT")
    before = await make_evaluator(store, cache).evaluate(actor, required)

    store.grant_role("7", "department", "READ", "OWN")
    await cache.invalidate("7")
    after = await make_evaluator(store, cache).evaluate(actor, required)

    assert before.allowed is True
    assert after.allowed is True


# ---- Failures ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unavailable_store_is_not_a_denial(store, cache, actor, unavailable):
    store.fail_with = unavailable

    with pytest.raises(EvaluationUnavailableError):
        await make_evaluator(store, cache).evaluate(actor, [RequiredPermission("role", "READ", "ALL")])

    assert await cache.get_decision("7", RequiredPermission("role", "READ", "ALL")) is None


@pytest.mark.asyncio
async def test_lookup_error_denies_without_caching(store, cache, actor):
    await cache.set_bypass("7", False)
    store.fail_with = RuntimeError("corrupt row")
    evaluator = make_evaluator(store, cache)
    required = RequiredPermission("role", "READ", "ALL")

    result = await evaluator.evaluate(actor, [required])

    assert result.allowed is False
    assert result.denied_reasons == ("lookup failed for user override",)
    assert await cache.get_decision("7", required) is None

    store.fail_with = None
    store.grant_role("7", "role", "READ", "ALL")
    assert (await evaluator.evaluate(actor, [required])).allowed is True


@pytest.mark.asyncio
async def test_bypass_lookup_error_means_no_bypass(store, cache, actor):
    store.fail_with = RuntimeError("corrupt row")

    result = await make_evaluator(store, cache).evaluate(actor, [RequiredPermission("role", "READ", "ALL")])

    assert result.allowed is False
    assert await cache.get_bypass("7") is None


# ---- Recording ---------------------------------------------------------------------


@pytest.mark.asyncio
async def test_every_tuple_is_recorded(store, cache, actor):
    recorder = ListRecorder()
    store.grant_role("7", "department", "READ", "SCHOOL")
    evaluator = make_evaluator(store, cache, recorder=recorder, clock=lambda: 1700000000.5)

    await evaluator.evaluate(
        actor,
        [RequiredPermission("department", "READ", "SCHOOL"), RequiredPermission("role", "UPDATE", "ALL")],
    )

    assert [(e.resource, e.allowed) for e in recorder.events] == [("department", True), ("role", False)]
    assert recorder.events[0].timestamp_ms == 1700000000500
    assert recorder.events[1].reason == "no permission for role:UPDATE"


@pytest.mark.asyncio
async def test_recorder_failure_does_not_change_decision(store, cache, actor):
    store.grant_role("7", "department", "READ", "SCHOOL")
    evaluator = make_evaluator(store, cache, recorder=ExplodingRecorder())

    result = await evaluator.evaluate(actor, [RequiredPermission("department", "READ", "SCHOOL")])

    assert result.allowed is True


# ---- Time-bounded overrides ----------------------------------------------------------


class FakeClock:
    """Epoch-seconds clock shared by the evaluator and the cache backend."""

    def __init__(self, now: datetime) -> None:
        self.now = now.replace(tzinfo=timezone.utc).timestamp()

    def __call__(self) -> float:
        return self.now


NOON = datetime(2025, 1, 15, 12, 0, 0)


@pytest.mark.asyncio
async def test_cached_override_expires_with_the_override(store, actor):
    clock = FakeClock(NOON)
    cache = DecisionCache(InMemoryCacheBackend(clock=clock))
    store.set_override("7", "report", "EXPORT", True, valid_until=NOON + timedelta(seconds=10))
    evaluator = make_evaluator(store, cache, clock=clock)
    required = [RequiredPermission("report", "EXPORT", "ALL")]

    assert (await evaluator.evaluate(actor, required)).allowed is True

    # The store stops returning the override once it has expired.
    clock.now += 60
    del store.overrides[("7", "report", "EXPORT")]

    result = await evaluator.evaluate(actor, required)
    assert result.allowed is False
    assert result.denied_reasons == ("no permission for report:EXPORT",)


@pytest.mark.asyncio
async def test_override_without_expiry_uses_full_ttl(store, actor):
    clock = FakeClock(NOON)
    cache = DecisionCache(InMemoryCacheBackend(clock=clock))
    store.set_override("7", "report", "EXPORT", False)
    evaluator = make_evaluator(store, cache, clock=clock)
    required = [RequiredPermission("report", "EXPORT", "ALL")]
    await evaluator.evaluate(actor, required)

    clock.now += 299
    assert await cache.get_decision("7", required[0]) is not None


@pytest.mark.asyncio
async def test_override_about_to_expire_is_not_cached(store, cache, actor):
    clock = FakeClock(NOON)
    store.set_override("7", "report", "EXPORT", True, valid_until=NOON + timedelta(milliseconds=500))
    evaluator = make_evaluator(store, cache, clock=clock)
    required = RequiredPermission("report", "EXPORT", "ALL")

    assert (await evaluator.evaluate(actor, [required])).allowed is True
    assert await cache.get_decision("7", required) is None
