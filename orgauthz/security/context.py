from __future__ import annotations

from dataclasses import dataclass

from orgauthz.authz.types import Actor, Decision, RequiredPermission


@dataclass(frozen=True)
class AuthzContext:
    """
    Per-request authorization outcome, attached to `request.state.authz`.

    Handlers can read which tuples were required and why each was allowed.
    """

    actor: Actor
    required_permissions: tuple[RequiredPermission, ...]
    decisions: tuple[tuple[RequiredPermission, Decision], ...]

    def reasons(self) -> dict[str, str]:
        return {required.label: decision.reason for required, decision in self.decisions}
