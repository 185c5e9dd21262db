from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orgauthz.authz.cache import DecisionCache
from orgauthz.db.check_log import list_check_logs
from orgauthz.db.session import get_db
from orgauthz.models.permissions import Permission, PermissionCheckLog, Role, UserOverride, UserPermission, UserRole
from orgauthz.schemas.authz import (
    CheckLogOut,
    InvalidationOut,
    OverrideIn,
    OverrideOut,
    PermissionOut,
    PermissionUpdate,
    RoleOut,
    RolePermissionIn,
    RoleUpdate,
    UserPermissionIn,
    UserPermissionOut,
    UserRoleOut,
)
from orgauthz.security.decorators import require_permissions
from orgauthz.security.dependencies import get_decision_cache
from orgauthz.services.grants import GrantNotFoundError, GrantService

router = APIRouter(prefix="/admin", tags=["admin"])


def get_grant_service(
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_decision_cache),
) -> GrantService:
    return GrantService(db, cache)


def _not_found(exc: GrantNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# ---- Role membership ---------------------------------------------------------------


@router.put("/users/{user_id}/roles/{role_id}", response_model=UserRoleOut)
async def assign_role(user_id: int, role_id: int, grants: GrantService = Depends(get_grant_service)) -> UserRole:
    try:
        return await grants.assign_role(user_id, role_id)
    except GrantNotFoundError as exc:
        raise _not_found(exc) from exc


@router.delete("/users/{user_id}/roles/{role_id}", response_model=UserRoleOut)
async def revoke_role(user_id: int, role_id: int, grants: GrantService = Depends(get_grant_service)) -> UserRole:
    try:
        return await grants.revoke_role(user_id, role_id)
    except GrantNotFoundError as exc:
        raise _not_found(exc) from exc


# ---- Per-user grants ---------------------------------------------------------------


@router.post("/users/{user_id}/overrides", response_model=OverrideOut, status_code=status.HTTP_201_CREATED)
async def set_override(
    user_id: int,
    payload: OverrideIn,
    grants: GrantService = Depends(get_grant_service),
) -> UserOverride:
    try:
        return await grants.set_override(
            user_id,
            payload.resource,
            payload.action,
            is_granted=payload.is_granted,
            valid_until=payload.valid_until,
            reason=payload.reason,
        )
    except GrantNotFoundError as exc:
        raise _not_found(exc) from exc


@router.delete("/users/{user_id}/overrides/{resource}/{action}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_overrides(
    user_id: int,
    resource: str,
    action: str,
    grants: GrantService = Depends(get_grant_service),
) -> None:
    await grants.clear_overrides(user_id, resource, action)


@router.post("/users/{user_id}/permissions", response_model=UserPermissionOut)
async def grant_user_permission(
    user_id: int,
    payload: UserPermissionIn,
    grants: GrantService = Depends(get_grant_service),
) -> UserPermission:
    try:
        return await grants.grant_user_permission(user_id, payload.permission_id, is_granted=payload.is_granted)
    except GrantNotFoundError as exc:
        raise _not_found(exc) from exc


@router.delete("/users/{user_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_user_permission(
    user_id: int,
    permission_id: int,
    grants: GrantService = Depends(get_grant_service),
) -> None:
    await grants.revoke_user_permission(user_id, permission_id)


# ---- Roles -------------------------------------------------------------------------


@router.put("/roles/{role_id}/permissions/{permission_id}", response_model=InvalidationOut)
async def set_role_permission(
    role_id: int,
    permission_id: int,
    payload: RolePermissionIn,
    grants: GrantService = Depends(get_grant_service),
) -> InvalidationOut:
    try:
        holders = await grants.set_role_permission(role_id, permission_id, is_granted=payload.is_granted)
    except GrantNotFoundError as exc:
        raise _not_found(exc) from exc
    return InvalidationOut(invalidated_users=holders)


@router.delete("/roles/{role_id}/permissions/{permission_id}", response_model=InvalidationOut)
async def remove_role_permission(
    role_id: int,
    permission_id: int,
    grants: GrantService = Depends(get_grant_service),
) -> InvalidationOut:
    holders = await grants.remove_role_permission(role_id, permission_id)
    return InvalidationOut(invalidated_users=holders)


@router.patch("/roles/{role_id}", response_model=RoleOut)
async def update_role(role_id: int, payload: RoleUpdate, grants: GrantService = Depends(get_grant_service)) -> Role:
    try:
        return await grants.update_role(
            role_id,
            hierarchy_level=payload.hierarchy_level,
            is_active=payload.is_active,
            description=payload.description,
        )
    except GrantNotFoundError as exc:
        raise _not_found(exc) from exc


@router.patch("/permissions/{permission_id}", response_model=PermissionOut)
async def update_permission(
    permission_id: int,
    payload: PermissionUpdate,
    grants: GrantService = Depends(get_grant_service),
) -> Permission:
    changes: dict = {"is_active": payload.is_active}
    if "scope" in payload.model_fields_set:
        changes["scope"] = payload.scope
    try:
        return await grants.update_permission(permission_id, **changes)
    except GrantNotFoundError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


# ---- Cache -------------------------------------------------------------------------


@router.post("/cache/users/{user_id}/invalidate", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_user_cache(user_id: int, cache: DecisionCache = Depends(get_decision_cache)) -> None:
    await cache.invalidate(str(user_id))
    await cache.invalidate_bypass(str(user_id))


@router.post("/cache/invalidate", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_all_cache(cache: DecisionCache = Depends(get_decision_cache)) -> None:
    await cache.invalidate_all()


# ---- Audit -------------------------------------------------------------------------


@router.get("/check-logs", response_model=list[CheckLogOut])
@require_permissions(("audit", "READ", "ALL"))
def get_check_logs(
    user_id: str | None = None,
    is_allowed: bool | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
) -> list[PermissionCheckLog]:
    return list_check_logs(db, user_id=user_id, is_allowed=is_allowed, limit=min(limit, 500))
