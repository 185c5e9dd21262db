from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from orgauthz.authz.cache import DEFAULT_BYPASS_TTL_SECONDS, DEFAULT_DECISION_TTL_SECONDS
from orgauthz.authz.errors import AuthzConfigError
from orgauthz.authz.ownership import RESOLVER_KINDS
from orgauthz.authz.recorder import DEFAULT_QUEUE_SIZE
from orgauthz.authz.types import RequiredPermission


class AuthConfig(BaseModel):
    provider: str = "dummy"
    authorization_header: str = "Authorization"
    bearer_prefix: str = "Bearer"


class CacheConfig(BaseModel):
    decision_ttl_seconds: int = Field(default=DEFAULT_DECISION_TTL_SECONDS, gt=0)
    bypass_ttl_seconds: int = Field(default=DEFAULT_BYPASS_TTL_SECONDS, gt=0)


class RecorderConfig(BaseModel):
    queue_size: int = Field(default=DEFAULT_QUEUE_SIZE, gt=0)


class DefaultRule(BaseModel):
    auth_required: bool = True


class PermissionRequirement(BaseModel):
    resource: str
    action: str
    scope: str | None = None

    def to_required(self) -> RequiredPermission:
        return RequiredPermission(resource=self.resource, action=self.action.upper(), scope=self.scope)


class RouteRule(BaseModel):
    path: str
    methods: list[str] = Field(default_factory=lambda: ["GET"])

    auth_required: bool | None = None
    permissions: list[PermissionRequirement] = Field(default_factory=list)

    def normalized_methods(self) -> set[str]:
        return {m.upper() for m in self.methods}


class AuthzConfigModel(BaseModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)
    default: DefaultRule = Field(default_factory=DefaultRule)
    ownership: dict[str, str] = Field(default_factory=dict)
    routes: list[RouteRule] = Field(default_factory=list)

    @field_validator("ownership")
    @classmethod
    def _known_resolver_kinds(cls, value: dict[str, str]) -> dict[str, str]:
        unknown = {kind for kind in value.values() if kind.lower() not in RESOLVER_KINDS}
        if unknown:
            raise ValueError(f"unknown ownership resolver kinds: {sorted(unknown)}")
        return value


@dataclass(frozen=True)
class EffectiveRule:
    """
    Fully-resolved rule (defaults applied) for a particular request.
    """

    auth_required: bool
    required_permissions: tuple[RequiredPermission, ...]


def _path_template_to_regex(path_template: str) -> re.Pattern[str]:
    # "/departments/{id}" -> r"^/departments/[^/]+$"
    regex = re.sub(r"\{[^/]+\}", r"[^/]+", path_template)
    return re.compile(rf"^{regex}$")


class AuthzConfig:
    """
    Runtime helper around validated config + route matching.
    """

    def __init__(self, model: AuthzConfigModel):
        self.model = model

        # Prefer exact matches over templates.
        self._exact_rules: dict[str, list[RouteRule]] = {}
        for r in self.model.routes:
            self._exact_rules.setdefault(r.path, []).append(r)
        self._compiled_rules = [(_path_template_to_regex(r.path), r) for r in self.model.routes]

    @property
    def auth(self) -> AuthConfig:
        return self.model.auth

    @property
    def cache(self) -> CacheConfig:
        return self.model.cache

    @property
    def recorder(self) -> RecorderConfig:
        return self.model.recorder

    @property
    def ownership(self) -> dict[str, str]:
        return dict(self.model.ownership)

    def match(self, path: str, method: str) -> EffectiveRule:
        """
        Find the best matching rule for (path, method), then apply defaults.
        """

        method = method.upper()

        # 1) exact path match
        for candidate in self._exact_rules.get(path, []):
            if method in candidate.normalized_methods():
                return self._effective(candidate)

        # 2) template match
        for regex, candidate in self._compiled_rules:
            if method in candidate.normalized_methods() and regex.match(path):
                return self._effective(candidate)

        # 3) no match -> defaults
        return EffectiveRule(auth_required=self.model.default.auth_required, required_permissions=())

    def _effective(self, rule: RouteRule) -> EffectiveRule:
        # A rule that requires permissions always requires an actor.
        inferred_auth_required = self.model.default.auth_required or bool(rule.permissions)
        return EffectiveRule(
            auth_required=inferred_auth_required if rule.auth_required is None else rule.auth_required,
            required_permissions=tuple(p.to_required() for p in rule.permissions),
        )


def load_authz_config(path: Path) -> AuthzConfig:
    raw_text = path.read_text(encoding="utf-8")
    raw: dict[str, Any] = yaml.safe_load(raw_text) or {}

    if "authz" not in raw:
        raise AuthzConfigError(f"Missing top-level 'authz' key in config: {path}")

    try:
        model = AuthzConfigModel.model_validate(raw["authz"])
    except ValidationError as exc:
        raise AuthzConfigError(f"Invalid authz config {path}: {exc}") from exc
    return AuthzConfig(model)
