from __future__ import annotations

from collections.abc import Callable

from orgauthz.authz.types import RequiredPermission


def require_permissions(*permissions: RequiredPermission | tuple[str, str] | tuple[str, str, str | None]) -> Callable:
    """
    Decorator-style API, alternative to route rules in authz_config.yaml.

    Implementation detail:
    - This decorator does NOT evaluate anything itself.
    - It attaches metadata that the global `enforce_permissions` dependency
      reads after routing and adds to the route rule's requirements.

    Usage:
        @router.get("/positions/{id}")
        @require_permissions(("position", "READ", "DEPARTMENT"))
        def get_position(...): ...
    """

    required = tuple(p if isinstance(p, RequiredPermission) else RequiredPermission(*p) for p in permissions)

    def decorator(fn: Callable) -> Callable:
        existing = tuple(getattr(fn, "__authz_required_permissions__", ()))
        setattr(fn, "__authz_required_permissions__", existing + required)
        return fn

    return decorator
