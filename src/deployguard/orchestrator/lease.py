"""Per-environment deployment leases."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock

from deployguard.errors import DeploymentInProgress


class LeaseRegistry:
    """At most one holder per environment; acquisition never blocks."""

    def __init__(self) -> None:
        self._holders: dict[str, str] = {}
        self._lock = Lock()

    def try_acquire(self, environment: str, holder: str) -> bool:
        with self._lock:
            if environment in self._holders:
                return False
            self._holders[environment] = holder
            return True

    def release(self, environment: str, holder: str) -> None:
        with self._lock:
            if self._holders.get(environment) == holder:
                del self._holders[environment]

    def holder(self, environment: str) -> str | None:
        with self._lock:
            return self._holders.get(environment)

    @contextmanager
    def hold(self, environment: str, holder: str) -> Iterator[None]:
        if not self.try_acquire(environment, holder):
            raise DeploymentInProgress(
                f"Deployment {self.holder(environment)} already in progress for {environment}"
            )
        try:
            yield
        finally:
            self.release(environment, holder)
