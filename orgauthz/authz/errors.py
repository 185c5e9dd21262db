"""Exception types raised by the authorization engine."""

from __future__ import annotations


class AuthzError(Exception):
    """Base class for authorization engine errors."""


class AuthzConfigError(AuthzError, ValueError):
    """Raised when the authorization YAML configuration is invalid."""


class DataStoreUnavailableError(AuthzError):
    """The permission data store cannot be reached (connection-level failure)."""


class EvaluationUnavailableError(AuthzError):
    """
    A decision could not be computed because the data store is unavailable.

    Distinct from a denial so the request layer can answer 503 instead of 403.
    """


class CacheUnavailableError(AuthzError):
    """Raised by cache backends; DecisionCache always absorbs it."""
