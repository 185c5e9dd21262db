"""
Circuit breaker around data-store calls.

States:
    CLOSED     calls pass through; consecutive connection failures are counted
    OPEN       calls fail immediately with DataStoreUnavailableError
    HALF_OPEN  after `reset_timeout` seconds, trial calls pass through; enough
               successes close the circuit, any failure opens it again

Only connection-class errors count as failures. Everything else (bad query,
integrity error, ...) propagates unchanged and leaves the state alone.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from orgauthz.authz.errors import DataStoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONNECTION_ERRORS: tuple[type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_max_attempts: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._half_open_max_attempts = half_open_max_attempts
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
            }

    def execute(self, operation: Callable[..., T], *args: object) -> T:
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.OPEN:
                raise DataStoreUnavailableError("circuit breaker is OPEN - database unavailable")

        try:
            result = operation(*args)
        except CONNECTION_ERRORS as exc:
            self._on_failure(exc)
            raise DataStoreUnavailableError(str(exc)) from exc

        self._on_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._close()

    # ---- State transitions ----------------------------------------------------------

    def _maybe_half_open(self) -> None:
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self._reset_timeout:
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0
            logger.info("Circuit breaker HALF_OPEN - testing database connection")

    def _on_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._half_open_max_attempts:
                    self._close()
            elif self._state is CircuitState.CLOSED:
                self._failure_count = 0

    def _on_failure(self, exc: Exception) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                logger.warning("Circuit breaker HALF_OPEN - failure detected, opening circuit")
                self._open()
                return
            self._failure_count += 1
            logger.warning(
                "Circuit breaker CLOSED - failure %s/%s: %s",
                self._failure_count,
                self._failure_threshold,
                exc,
            )
            if self._failure_count >= self._failure_threshold:
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.error("Circuit breaker OPEN - will attempt recovery in %ss", self._reset_timeout)

    def _close(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit breaker CLOSED - database connection restored")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
