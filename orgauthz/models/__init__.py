from orgauthz.models.organization import Department, Position, School, UserProfile
from orgauthz.models.permissions import (
    Permission,
    PermissionCheckLog,
    Role,
    RolePermission,
    UserOverride,
    UserPermission,
    UserRole,
)

__all__ = [
    "Department",
    "Permission",
    "PermissionCheckLog",
    "Position",
    "Role",
    "RolePermission",
    "School",
    "UserOverride",
    "UserPermission",
    "UserProfile",
    "UserRole",
]
