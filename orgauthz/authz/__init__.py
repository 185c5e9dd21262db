"""
Authorization decision engine.

Resolves whether an actor holds a set of (resource, action, scope) permissions.
This package has no dependency on FastAPI or the ORM: data access goes through
the PermissionStore protocol and decisions are memoized through DecisionCache.
Use PolicyEvaluator.evaluate() to get an EvaluationResult.
"""

from .cache import DecisionCache, InMemoryCacheBackend, RedisCacheBackend
from .errors import AuthzConfigError, AuthzError, DataStoreUnavailableError, EvaluationUnavailableError
from .evaluator import PolicyEvaluator
from .recorder import QueueDecisionRecorder
from .scopes import Scope, is_scope_sufficient
from .store import PermissionStore
from .types import Actor, Decision, EvaluationResult, RequestValues, RequiredPermission

__all__ = [
    "Actor",
    "AuthzConfigError",
    "AuthzError",
    "DataStoreUnavailableError",
    "Decision",
    "DecisionCache",
    "EvaluationResult",
    "EvaluationUnavailableError",
    "InMemoryCacheBackend",
    "PermissionStore",
    "PolicyEvaluator",
    "QueueDecisionRecorder",
    "RedisCacheBackend",
    "RequestValues",
    "RequiredPermission",
    "Scope",
    "is_scope_sufficient",
]
