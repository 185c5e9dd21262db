"""
SQLAlchemy implementation of the engine's PermissionStore.

Queries run on the request's sync Session inside Starlette's threadpool, so
each lookup is an awaitable suspension point for the evaluator, and every
call goes through the circuit breaker.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from orgauthz.authz.types import OverrideRecord, OwnershipInfo
from orgauthz.db.resilience import CircuitBreaker
from orgauthz.models.organization import Department, Position, School, UserProfile
from orgauthz.models.permissions import Permission, Role, RolePermission, UserOverride, UserPermission, UserRole

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _as_int(value: str) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_str(value: int | None) -> str | None:
    return None if value is None else str(value)


class SqlAlchemyPermissionStore:
    def __init__(
        self,
        db: Session,
        breaker: CircuitBreaker | None = None,
        *,
        now: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._db = db
        self._breaker = breaker or CircuitBreaker()
        self._now = now

    async def _run(self, fn: Callable[..., T], *args: object) -> T:
        return await run_in_threadpool(self._breaker.execute, fn, *args)

    # ---- PermissionStore ------------------------------------------------------------

    async def find_override(self, actor_id: str, resource: str, action: str) -> OverrideRecord | None:
        return await self._run(self._find_override, actor_id, resource, action)

    async def find_direct_grant(self, actor_id: str, resource: str, action: str) -> bool:
        return await self._run(self._find_direct_grant, actor_id, resource, action)

    async def find_role_grants(self, actor_id: str, resource: str, action: str) -> list[str | None]:
        return await self._run(self._find_role_grants, actor_id, resource, action)

    async def find_hierarchy_level0_role(self, actor_id: str) -> bool:
        return await self._run(self._find_hierarchy_level0_role, actor_id)

    async def resolve_ownership(self, kind: str, resource_id: str) -> OwnershipInfo | None:
        return await self._run(self._resolve_ownership, kind, resource_id)

    # ---- Queries --------------------------------------------------------------------

    def _find_override(self, actor_id: str, resource: str, action: str) -> OverrideRecord | None:
        user_id = _as_int(actor_id)
        if user_id is None:
            return None

        stmt = (
            select(UserOverride.is_granted, UserOverride.valid_until)
            .where(
                UserOverride.user_id == user_id,
                UserOverride.resource == resource,
                UserOverride.action == action,
                or_(UserOverride.valid_until.is_(None), UserOverride.valid_until > self._now()),
            )
            # A denying override wins over a granting one.
            .order_by(UserOverride.is_granted.asc(), UserOverride.id.desc())
            .limit(1)
        )
        row = self._db.execute(stmt).first()
        if row is None:
            return None
        return OverrideRecord(is_granted=row.is_granted, valid_until=row.valid_until)

    def _find_direct_grant(self, actor_id: str, resource: str, action: str) -> bool:
        user_id = _as_int(actor_id)
        if user_id is None:
            return False

        stmt = (
            select(UserPermission.id)
            .join(Permission, Permission.id == UserPermission.permission_id)
            .where(
                UserPermission.user_id == user_id,
                UserPermission.is_granted.is_(True),
                Permission.resource == resource,
                Permission.action == action,
                Permission.is_active.is_(True),
            )
            .limit(1)
        )
        return self._db.execute(stmt).first() is not None

    def _find_role_grants(self, actor_id: str, resource: str, action: str) -> list[str | None]:
        user_id = _as_int(actor_id)
        if user_id is None:
            return []

        stmt = (
            select(Permission.scope)
            .select_from(UserRole)
            .join(Role, Role.id == UserRole.role_id)
            .join(RolePermission, RolePermission.role_id == Role.id)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(
                UserRole.user_id == user_id,
                UserRole.is_active.is_(True),
                Role.is_active.is_(True),
                RolePermission.is_granted.is_(True),
                Permission.resource == resource,
                Permission.action == action,
                Permission.is_active.is_(True),
            )
        )
        return list(self._db.scalars(stmt).all())

    def _find_hierarchy_level0_role(self, actor_id: str) -> bool:
        user_id = _as_int(actor_id)
        if user_id is None:
            return False

        stmt = (
            select(UserRole.id)
            .join(Role, Role.id == UserRole.role_id)
            .where(
                UserRole.user_id == user_id,
                UserRole.is_active.is_(True),
                Role.is_active.is_(True),
                Role.hierarchy_level == 0,
            )
            .limit(1)
        )
        return self._db.execute(stmt).first() is not None

    def _resolve_ownership(self, kind: str, resource_id: str) -> OwnershipInfo | None:
        pk = _as_int(resource_id)
        if pk is None:
            return None

        if kind == "user":
            user = self._db.get(UserProfile, pk)
            if user is None:
                return None
            school_id = user.school_id
            if school_id is None and user.department is not None:
                school_id = user.department.school_id
            return OwnershipInfo(
                owner_id=str(user.id),
                department_id=_as_str(user.department_id),
                school_id=_as_str(school_id),
            )

        if kind == "department":
            department = self._db.get(Department, pk)
            if department is None:
                return None
            return OwnershipInfo(department_id=str(department.id), school_id=_as_str(department.school_id))

        if kind == "position":
            position = self._db.get(Position, pk)
            if position is None:
                return None
            school_id = position.department.school_id if position.department is not None else None
            return OwnershipInfo(department_id=_as_str(position.department_id), school_id=_as_str(school_id))

        if kind == "school":
            school = self._db.get(School, pk)
            if school is None:
                return None
            return OwnershipInfo(school_id=str(school.id))

        logger.debug("Unknown ownership resolver kind=%s", kind)
        return None
