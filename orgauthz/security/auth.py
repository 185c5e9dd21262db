from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from orgauthz.authz.types import Actor
from orgauthz.models.organization import UserProfile
from orgauthz.models.permissions import UserRole
from orgauthz.security.config import AuthzConfig

logger = logging.getLogger(__name__)


def extract_user_id(request: Request, config: AuthzConfig) -> int | None:
    """
    Demo auth: extract bearer token and treat it as a user id.

    - Input: `Authorization: Bearer <token>`
    - Demo behavior: `<token>` must be an integer user id
    - Production behavior: an identity provider resolves the token to a user
    """

    header_name = config.auth.authorization_header
    bearer_prefix = config.auth.bearer_prefix

    raw = request.headers.get(header_name)
    if not raw:
        logger.info("Missing Authorization header (auth required) path=%s method=%s", request.url.path, request.method)
        return None

    prefix = f"{bearer_prefix} "
    if not raw.startswith(prefix):
        logger.warning("Invalid Authorization header format path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Expected '{bearer_prefix} <token>'.",
        )

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Missing token after '{bearer_prefix}'.",
        )

    try:
        return int(token)
    except ValueError as exc:
        logger.warning("Bearer token not an int (demo expects user id) path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid bearer token for demo (expected integer user id).",
        ) from exc


def load_user(db: Session, user_id: int) -> UserProfile:
    user = db.execute(
        select(UserProfile)
        .where(UserProfile.id == user_id)
        .options(
            selectinload(UserProfile.department),
            selectinload(UserProfile.user_roles).selectinload(UserRole.role),
        )
    ).scalar_one_or_none()

    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or inactive user")

    return user


def to_actor(user: UserProfile) -> Actor:
    """Snapshot a loaded user as the engine's Actor (ids as strings)."""

    school_id = user.school_id
    if school_id is None and user.department is not None:
        school_id = user.department.school_id

    roles = frozenset(ur.role.name for ur in user.user_roles if ur.is_active and ur.role.is_active)
    return Actor(
        id=str(user.id),
        school_id=None if school_id is None else str(school_id),
        department_id=None if user.department_id is None else str(user.department_id),
        position_id=None if user.position_id is None else str(user.position_id),
        roles=roles,
    )


def load_actor(db: Session, user_id: int) -> tuple[UserProfile, Actor]:
    user = load_user(db, user_id)
    return user, to_actor(user)
