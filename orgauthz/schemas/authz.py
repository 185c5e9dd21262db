from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UserRoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    role_id: int
    is_active: bool


class OverrideIn(BaseModel):
    resource: str
    action: str
    is_granted: bool
    valid_until: datetime | None = None
    reason: str | None = None


class OverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    resource: str
    action: str
    is_granted: bool
    valid_until: datetime | None


class UserPermissionIn(BaseModel):
    permission_id: int
    is_granted: bool = True


class UserPermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    permission_id: int
    is_granted: bool


class RolePermissionIn(BaseModel):
    is_granted: bool = True


class RoleUpdate(BaseModel):
    hierarchy_level: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    description: str | None = None


class RoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    hierarchy_level: int
    is_active: bool


class InvalidationOut(BaseModel):
    invalidated_users: list[int]


class CheckLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    resource: str
    action: str
    scope: str
    is_allowed: bool
    reason: str
    checked_at: datetime


class PermissionUpdate(BaseModel):
    scope: str | None = None
    is_active: bool | None = None


class PermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    resource: str
    action: str
    scope: str | None
    is_active: bool
