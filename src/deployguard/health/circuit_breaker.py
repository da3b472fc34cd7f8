"""Per-dependency circuit breakers for health checks."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from threading import Lock
import time
from typing import Any

from deployguard.contracts.types import CircuitState
from deployguard.observability.metrics import BREAKER_TRANSITIONS

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CircuitBreaker:
    """Closed → open after `failure_threshold` consecutive failures.

    While open, calls are refused until `recovery_timeout` seconds have passed
    since the breaker opened; then exactly one probe is let through
    (half-open) and its outcome alone closes or re-opens the breaker.
    """

    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at: float | None = None
    last_failure_at: float | None = None
    _probe_in_flight: bool = False
    _lock: Lock = field(default_factory=Lock)

    def _transition(self, state: CircuitState) -> None:
        if state is self.state:
            return
        logger.info(
            "breaker.transition",
            extra={"extra": {"breaker": self.name, "from": self.state.value, "to": state.value}},
        )
        self.state = state
        BREAKER_TRANSITIONS.labels(dependency=self.name, state=state.value).inc()

    def allow(self) -> bool:
        """Whether a call may go through now. A granted half-open probe must be
        followed by `record_success` or `record_failure`."""
        with self._lock:
            if self.state is CircuitState.OPEN:
                if self.opened_at is None:
                    # Opened without a timestamp: the recovery window starts now.
                    self.opened_at = self.clock()
                    return False
                if self.clock() - self.opened_at < self.recovery_timeout:
                    return False
                self._transition(CircuitState.HALF_OPEN)
                self._probe_in_flight = True
                return True
            if self.state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    return False
                self._probe_in_flight = True
                return True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._probe_in_flight = False
            self.failure_count = 0
            self.opened_at = None
            self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            now = self.clock()
            self._probe_in_flight = False
            self.failure_count += 1
            self.last_failure_at = now
            if self.state is CircuitState.HALF_OPEN or (
                self.state is CircuitState.CLOSED and self.failure_count >= self.failure_threshold
            ):
                self.opened_at = now
                self._transition(CircuitState.OPEN)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self.state.value,
                "failure_count": self.failure_count,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
                "opened_at": self.opened_at,
                "last_failure_at": self.last_failure_at,
            }


@dataclass(slots=True)
class BreakerRegistry:
    """Breakers keyed by (environment, dependency); nothing is shared across environments."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _breakers: dict[tuple[str, str], CircuitBreaker] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def get(self, environment: str, dependency: str) -> CircuitBreaker:
        key = (environment, dependency)
        with self._lock:
            if key not in self._breakers:
                self._breakers[key] = CircuitBreaker(
                    name=dependency,
                    failure_threshold=self.failure_threshold,
                    recovery_timeout=self.recovery_timeout,
                    clock=self.clock,
                )
            return self._breakers[key]

    def snapshot(self, environment: str) -> dict[str, dict[str, Any]]:
        with self._lock:
            items = [(dep, b) for (env, dep), b in self._breakers.items() if env == environment]
        return {dep: breaker.snapshot() for dep, breaker in items}
