"""
Scope comparison.

Scopes form a linear order along the ownership hierarchy:

    OWN < DEPARTMENT < SCHOOL < ALL

A granted scope satisfies a requested scope when it is at least as broad.
Unknown values never satisfy anything and are never satisfied.
"""

from __future__ import annotations

from enum import Enum


class Scope(str, Enum):
    OWN = "OWN"
    DEPARTMENT = "DEPARTMENT"
    SCHOOL = "SCHOOL"
    ALL = "ALL"

    @classmethod
    def parse(cls, value: str | Scope | None) -> Scope | None:
        """Return the matching Scope, or None for missing/unknown values."""
        if value is None:
            return None
        if isinstance(value, Scope):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


_SCOPE_WEIGHTS: dict[Scope, int] = {
    Scope.OWN: 1,
    Scope.DEPARTMENT: 2,
    Scope.SCHOOL: 3,
    Scope.ALL: 4,
}


def scope_weight(value: str | Scope | None) -> int:
    scope = Scope.parse(value)
    if scope is None:
        return 0
    return _SCOPE_WEIGHTS[scope]


def is_scope_sufficient(available: str | Scope | None, required: str | Scope | None) -> bool:
    """
    True when `available` is at least as broad as `required`.

    Weight 0 (unknown) on either side is always insufficient.
    """

    available_weight = scope_weight(available)
    required_weight = scope_weight(required)
    if available_weight == 0 or required_weight == 0:
        return False
    return available_weight >= required_weight
