from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from orgauthz.authz.cache import DecisionCache
from orgauthz.authz.errors import EvaluationUnavailableError
from orgauthz.authz.evaluator import PolicyEvaluator
from orgauthz.authz.ownership import ScopeOwnershipChecker
from orgauthz.authz.types import RequestValues, RequiredPermission
from orgauthz.db.permission_store import SqlAlchemyPermissionStore
from orgauthz.db.session import get_db
from orgauthz.models.organization import UserProfile
from orgauthz.security.auth import extract_user_id, load_actor
from orgauthz.security.config import AuthzConfig
from orgauthz.security.context import AuthzContext

logger = logging.getLogger(__name__)

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def get_authz_config(request: Request) -> AuthzConfig:
    config = getattr(request.app.state, "authz_config", None)
    if config is None:
        raise RuntimeError("Authz config not loaded. Did app startup run?")
    return config


def get_decision_cache(request: Request) -> DecisionCache:
    cache = getattr(request.app.state, "decision_cache", None)
    if cache is None:
        raise RuntimeError("Decision cache not initialized. Did app startup run?")
    return cache


def get_current_user(request: Request) -> UserProfile:
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user


def build_evaluator(request: Request, db: Session) -> PolicyEvaluator:
    state = request.app.state
    return PolicyEvaluator(
        SqlAlchemyPermissionStore(db, state.circuit_breaker),
        state.decision_cache,
        ownership=ScopeOwnershipChecker(state.authz_config.ownership),
        recorder=state.decision_recorder,
    )


async def extract_request_values(request: Request) -> RequestValues:
    """Collect path params, JSON body and query string for resource-id lookup."""

    body: dict[str, Any] = {}
    if request.method.upper() in _BODY_METHODS and request.headers.get("content-type", "").startswith("application/json"):
        try:
            parsed = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            parsed = None
        if isinstance(parsed, dict):
            body = parsed

    return RequestValues(
        path_params=dict(request.path_params),
        body=body,
        query=dict(request.query_params),
    )


async def enforce_permissions(
    request: Request,
    config: AuthzConfig = Depends(get_authz_config),
    db: Session = Depends(get_db, use_cache=False),
) -> None:
    """
    Global authorization dependency (PRIMARY, configuration-driven).

    Why dependency (not middleware)?
    - Runs after routing, so path params and decorator metadata are available.
    - Requires **zero changes** to route handlers when added globally.
    """

    rule = config.match(request.url.path, request.method)

    endpoint = request.scope.get("endpoint")
    decorator_permissions: tuple[RequiredPermission, ...] = (
        tuple(getattr(endpoint, "__authz_required_permissions__", ())) if endpoint else ()
    )
    required = rule.required_permissions + decorator_permissions

    if not (rule.auth_required or required):
        return

    user_id = extract_user_id(request, config)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id")

    user, actor = await run_in_threadpool(load_actor, db, user_id)
    request.state.user = user
    request.state.actor = actor

    evaluator = build_evaluator(request, db)
    try:
        result = await evaluator.evaluate(actor, required, await extract_request_values(request))
    except EvaluationUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization temporarily unavailable",
        ) from exc

    if not result.allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient permissions: {result.denial_message}",
        )

    request.state.authz = AuthzContext(
        actor=actor,
        required_permissions=required,
        decisions=result.decisions,
    )
