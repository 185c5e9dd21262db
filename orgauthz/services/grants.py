"""
Grant administration.

Every write here completes its cache invalidation before returning, so the
writer's next request (and everyone else's) sees the new grants:

    role membership           -> invalidate(actor) + bypass flag
    override / direct grant   -> invalidate(actor)
    role-permission link      -> invalidate(actor) for every active holder
    role / permission change  -> invalidate_all()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from orgauthz.authz.cache import DecisionCache
from orgauthz.authz.scopes import Scope
from orgauthz.models.organization import UserProfile
from orgauthz.models.permissions import Permission, Role, RolePermission, UserOverride, UserPermission, UserRole

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class GrantNotFoundError(LookupError):
    """Referenced user, role or permission does not exist."""


class GrantService:
    def __init__(self, db: Session, cache: DecisionCache) -> None:
        self._db = db
        self._cache = cache

    # ---- Role membership ------------------------------------------------------------

    async def assign_role(self, user_id: int, role_id: int) -> UserRole:
        user_role = await run_in_threadpool(self._set_membership, user_id, role_id, True)
        await self._invalidate_member(user_id)
        return user_role

    async def revoke_role(self, user_id: int, role_id: int) -> UserRole:
        user_role = await run_in_threadpool(self._set_membership, user_id, role_id, False)
        await self._invalidate_member(user_id)
        return user_role

    # ---- Per-user grants ------------------------------------------------------------

    async def set_override(
        self,
        user_id: int,
        resource: str,
        action: str,
        *,
        is_granted: bool,
        valid_until: datetime | None = None,
        reason: str | None = None,
    ) -> UserOverride:
        override = await run_in_threadpool(
            self._add_override, user_id, resource, action.upper(), is_granted, valid_until, reason
        )
        await self._cache.invalidate(str(user_id))
        return override

    async def clear_overrides(self, user_id: int, resource: str, action: str) -> int:
        removed = await run_in_threadpool(self._delete_overrides, user_id, resource, action.upper())
        await self._cache.invalidate(str(user_id))
        return removed

    async def grant_user_permission(self, user_id: int, permission_id: int, *, is_granted: bool = True) -> UserPermission:
        user_permission = await run_in_threadpool(self._upsert_user_permission, user_id, permission_id, is_granted)
        await self._cache.invalidate(str(user_id))
        return user_permission

    async def revoke_user_permission(self, user_id: int, permission_id: int) -> int:
        removed = await run_in_threadpool(self._delete_user_permission, user_id, permission_id)
        await self._cache.invalidate(str(user_id))
        return removed

    # ---- Role permissions -----------------------------------------------------------

    async def set_role_permission(self, role_id: int, permission_id: int, *, is_granted: bool = True) -> list[int]:
        """Link (or re-link) a permission to a role; returns the affected holder ids."""
        holders = await run_in_threadpool(self._upsert_role_permission, role_id, permission_id, is_granted)
        await self._invalidate_holders(holders)
        return holders

    async def remove_role_permission(self, role_id: int, permission_id: int) -> list[int]:
        holders = await run_in_threadpool(self._delete_role_permission, role_id, permission_id)
        await self._invalidate_holders(holders)
        return holders

    # ---- Definitions ----------------------------------------------------------------

    async def update_role(
        self,
        role_id: int,
        *,
        hierarchy_level: int | None = None,
        is_active: bool | None = None,
        description: str | None = None,
    ) -> Role:
        role = await run_in_threadpool(self._update_role, role_id, hierarchy_level, is_active, description)
        await self._cache.invalidate_all()
        return role

    async def update_permission(
        self,
        permission_id: int,
        *,
        scope: str | None = _UNSET,
        is_active: bool | None = None,
    ) -> Permission:
        permission = await run_in_threadpool(self._update_permission, permission_id, scope, is_active)
        await self._cache.invalidate_all()
        return permission

    # ---- Invalidation ---------------------------------------------------------------

    async def _invalidate_member(self, user_id: int) -> None:
        actor_id = str(user_id)
        await self._cache.invalidate(actor_id)
        await self._cache.invalidate_bypass(actor_id)

    async def _invalidate_holders(self, user_ids: list[int]) -> None:
        for user_id in user_ids:
            await self._cache.invalidate(str(user_id))
        logger.debug("Invalidated decision cache for %s role holders", len(user_ids))

    # ---- Sync writes (threadpool) ---------------------------------------------------

    def _require(self, model: type, pk: int) -> Any:
        obj = self._db.get(model, pk)
        if obj is None:
            raise GrantNotFoundError(f"{model.__name__} {pk} not found")
        return obj

    def _set_membership(self, user_id: int, role_id: int, active: bool) -> UserRole:
        self._require(UserProfile, user_id)
        self._require(Role, role_id)
        user_role = self._db.scalars(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        ).first()
        if user_role is None:
            if not active:
                raise GrantNotFoundError(f"user {user_id} does not hold role {role_id}")
            user_role = UserRole(user_id=user_id, role_id=role_id)
            self._db.add(user_role)
        user_role.is_active = active
        self._db.commit()
        self._db.refresh(user_role)
        return user_role

    def _add_override(
        self,
        user_id: int,
        resource: str,
        action: str,
        is_granted: bool,
        valid_until: datetime | None,
        reason: str | None,
    ) -> UserOverride:
        self._require(UserProfile, user_id)
        override = UserOverride(
            user_id=user_id,
            resource=resource,
            action=action,
            is_granted=is_granted,
            valid_until=valid_until,
            reason=reason,
        )
        self._db.add(override)
        self._db.commit()
        self._db.refresh(override)
        return override

    def _delete_overrides(self, user_id: int, resource: str, action: str) -> int:
        result = self._db.execute(
            delete(UserOverride).where(
                UserOverride.user_id == user_id,
                UserOverride.resource == resource,
                UserOverride.action == action,
            )
        )
        self._db.commit()
        return result.rowcount

    def _upsert_user_permission(self, user_id: int, permission_id: int, is_granted: bool) -> UserPermission:
        self._require(UserProfile, user_id)
        self._require(Permission, permission_id)
        user_permission = self._db.scalars(
            select(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == permission_id,
            )
        ).first()
        if user_permission is None:
            user_permission = UserPermission(user_id=user_id, permission_id=permission_id)
            self._db.add(user_permission)
        user_permission.is_granted = is_granted
        self._db.commit()
        self._db.refresh(user_permission)
        return user_permission

    def _delete_user_permission(self, user_id: int, permission_id: int) -> int:
        result = self._db.execute(
            delete(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == permission_id,
            )
        )
        self._db.commit()
        return result.rowcount

    def _active_holders(self, role_id: int) -> list[int]:
        stmt = select(UserRole.user_id).where(UserRole.role_id == role_id, UserRole.is_active.is_(True))
        return list(self._db.scalars(stmt).all())

    def _upsert_role_permission(self, role_id: int, permission_id: int, is_granted: bool) -> list[int]:
        self._require(Role, role_id)
        self._require(Permission, permission_id)
        link = self._db.scalars(
            select(RolePermission).where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
            )
        ).first()
        if link is None:
            link = RolePermission(role_id=role_id, permission_id=permission_id)
            self._db.add(link)
        link.is_granted = is_granted
        self._db.commit()
        return self._active_holders(role_id)

    def _delete_role_permission(self, role_id: int, permission_id: int) -> list[int]:
        self._db.execute(
            delete(RolePermission).where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
            )
        )
        self._db.commit()
        return self._active_holders(role_id)

    def _update_role(
        self,
        role_id: int,
        hierarchy_level: int | None,
        is_active: bool | None,
        description: str | None,
    ) -> Role:
        role = self._require(Role, role_id)
        if hierarchy_level is not None:
            role.hierarchy_level = hierarchy_level
        if is_active is not None:
            role.is_active = is_active
        if description is not None:
            role.description = description
        self._db.commit()
        self._db.refresh(role)
        return role

    def _update_permission(self, permission_id: int, scope: str | None, is_active: bool | None) -> Permission:
        permission = self._require(Permission, permission_id)
        if scope is not _UNSET:
            if scope is not None and Scope.parse(scope) is None:
                raise ValueError(f"unknown scope {scope!r}")
            permission.scope = None if scope is None else Scope.parse(scope).value
        if is_active is not None:
            permission.is_active = is_active
        self._db.commit()
        self._db.refresh(permission)
        return permission
