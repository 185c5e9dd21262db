"""Value types shared by the decision engine components."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Actor:
    """
    Authenticated actor snapshot.

    Ids are strings so they compose into cache keys and compare against
    resource ids taken from the request without conversion.
    """

    id: str
    school_id: str | None = None
    department_id: str | None = None
    position_id: str | None = None
    roles: frozenset[str] = frozenset()


@dataclass(frozen=True)
class RequiredPermission:
    """One (resource, action, scope) tuple a request needs."""

    resource: str
    action: str
    scope: str | None = None

    @property
    def label(self) -> str:
        return f"{self.resource}:{self.action}"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    # False when the outcome depends on more than the cache key (resource id,
    # transient lookup failure) and must not be memoized.
    cacheable: bool = True
    # Naive UTC instant after which the decision no longer holds (time-bounded override).
    valid_until: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "reason": self.reason}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Decision:
        return cls(allowed=bool(raw["allowed"]), reason=str(raw["reason"]))


class SourceOutcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    NOT_APPLICABLE = "not-applicable"


@dataclass(frozen=True)
class SourceResult:
    """Tri-state answer from a single permission source."""

    outcome: SourceOutcome
    reason: str = ""
    cacheable: bool = True
    valid_until: datetime | None = None

    @classmethod
    def allow(cls, reason: str, *, cacheable: bool = True, valid_until: datetime | None = None) -> SourceResult:
        return cls(SourceOutcome.ALLOW, reason, cacheable, valid_until)

    @classmethod
    def deny(cls, reason: str, *, cacheable: bool = True, valid_until: datetime | None = None) -> SourceResult:
        return cls(SourceOutcome.DENY, reason, cacheable, valid_until)

    @classmethod
    def not_applicable(cls) -> SourceResult:
        return cls(SourceOutcome.NOT_APPLICABLE)

    @property
    def is_definitive(self) -> bool:
        return self.outcome is not SourceOutcome.NOT_APPLICABLE

    def to_decision(self) -> Decision:
        return Decision(
            allowed=self.outcome is SourceOutcome.ALLOW,
            reason=self.reason,
            cacheable=self.cacheable,
            valid_until=self.valid_until,
        )


@dataclass(frozen=True)
class OverrideRecord:
    is_granted: bool
    valid_until: datetime | None = None


@dataclass(frozen=True)
class OwnershipInfo:
    """Where a resource sits in the organization, as far as it can be resolved."""

    owner_id: str | None = None
    department_id: str | None = None
    school_id: str | None = None


@dataclass(frozen=True)
class EvaluationResult:
    allowed: bool
    denied_reasons: tuple[str, ...] = ()
    decisions: tuple[tuple[RequiredPermission, Decision], ...] = ()

    @property
    def failed(self) -> tuple[RequiredPermission, ...]:
        return tuple(required for required, decision in self.decisions if not decision.allowed)

    @property
    def denial_message(self) -> str:
        return ", ".join(self.denied_reasons)


@dataclass(frozen=True)
class DecisionEvent:
    """Payload handed to the decision recorder for every evaluated tuple."""

    actor_id: str
    resource: str
    action: str
    scope: str | None
    allowed: bool
    reason: str
    timestamp_ms: int

    def to_dict(self) -> dict[str, object]:
        return {
            "actor_id": self.actor_id,
            "resource": self.resource,
            "action": self.action,
            "scope": self.scope,
            "allowed": self.allowed,
            "reason": self.reason,
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass(frozen=True)
class RequestValues:
    """
    The parts of a request a resource id may come from.

    Lookup order is path params, then body, then query string; within each,
    `id`, then `<resource>Id`, then `<resource>_id`.
    """

    path_params: Mapping[str, Any] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)

    def resource_id(self, resource: str) -> str | None:
        candidates = ("id", f"{resource}Id", f"{resource}_id")
        for source in (self.path_params, self.body, self.query):
            for name in candidates:
                value = source.get(name)
                if value is not None and value != "":
                    return str(value)
        return None
