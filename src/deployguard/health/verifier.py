"""Aggregate health verification with per-dependency circuit breakers."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
import logging
import time

import httpx

from deployguard.contracts.models import CheckResult, EnvironmentDescriptor, HealthVerdict
from deployguard.contracts.types import HealthStatus
from deployguard.errors import DeployGuardError, DependencyUnavailable
from deployguard.health.checks import HealthCheck
from deployguard.health.circuit_breaker import BreakerRegistry
from deployguard.observability.metrics import CHECK_DURATION
from deployguard.observability.telemetry import ATTRIBUTE_PREFIX, get_tracer

logger = logging.getLogger(__name__)

ChecksFor = Callable[[EnvironmentDescriptor], Sequence[HealthCheck]]


def aggregate(results: dict[str, CheckResult]) -> HealthStatus:
    """Critical failure → unhealthy; optional failure alone → degraded."""
    critical_ok = all(r.status is HealthStatus.HEALTHY for r in results.values() if r.critical)
    if not critical_ok:
        return HealthStatus.UNHEALTHY
    if any(r.status is not HealthStatus.HEALTHY for r in results.values()):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class HealthVerifier:
    """Runs every registered check concurrently, each bounded by `timeout`.

    Optional dependencies go through a breaker scoped to the environment;
    an open breaker reports the check as skipped without calling out.
    Critical checks always run.
    """

    def __init__(
        self,
        checks_for: ChecksFor,
        breakers: BreakerRegistry,
        *,
        timeout: float = 10.0,
        max_workers: int = 5,
        grace: float = 1.0,
    ) -> None:
        self._checks_for = checks_for
        self._breakers = breakers
        self._timeout = timeout
        self._max_workers = max_workers
        self._grace = grace

    @property
    def breakers(self) -> BreakerRegistry:
        return self._breakers

    def _run_one(self, check: HealthCheck, environment: EnvironmentDescriptor) -> CheckResult:
        started = time.perf_counter()
        status, message, reason = HealthStatus.HEALTHY, "", None
        try:
            message = check.run(environment, self._timeout)
        except httpx.TimeoutException as exc:
            status, message, reason = HealthStatus.UNHEALTHY, str(exc) or "timed out", "timeout"
        except (DependencyUnavailable, httpx.HTTPError) as exc:
            reason = "error" if check.critical else "unavailable"
            status, message = HealthStatus.UNHEALTHY, str(exc) or type(exc).__name__
        except DeployGuardError as exc:
            status, message, reason = HealthStatus.UNHEALTHY, str(exc), "error"
        except Exception as exc:  # noqa: BLE001
            logger.exception("health.check.crashed", extra={"extra": {"check": check.name}})
            status, message, reason = HealthStatus.UNHEALTHY, str(exc), "error"
        latency = time.perf_counter() - started
        CHECK_DURATION.labels(check=check.name).observe(latency)
        return CheckResult(
            name=check.name,
            status=status,
            message=message,
            latency_ms=round(latency * 1000, 2),
            critical=check.critical,
            reason=reason,
        )

    def check_all(self, environment: EnvironmentDescriptor) -> HealthVerdict:
        tracer = get_tracer("deployguard.health")
        with tracer.start_as_current_span("health.check_all") as span:
            span.set_attribute(f"{ATTRIBUTE_PREFIX}environment", environment.name)
            results: dict[str, CheckResult] = {}
            pending: dict[str, tuple[HealthCheck, Future[CheckResult]]] = {}
            checks = list(self._checks_for(environment))
            pool = ThreadPoolExecutor(max_workers=max(1, min(self._max_workers, len(checks))))
            try:
                for check in checks:
                    if not check.critical and not self._breakers.get(environment.name, check.name).allow():
                        results[check.name] = CheckResult(
                            name=check.name,
                            status=HealthStatus.SKIPPED,
                            message="circuit open; check skipped",
                            critical=False,
                            reason="circuit_open",
                        )
                        continue
                    pending[check.name] = (check, pool.submit(self._run_one, check, environment))

                deadline = time.monotonic() + self._timeout + self._grace
                for name, (check, future) in pending.items():
                    try:
                        results[name] = future.result(timeout=max(0.0, deadline - time.monotonic()))
                    except FutureTimeout:
                        future.cancel()
                        results[name] = CheckResult(
                            name=name,
                            status=HealthStatus.UNHEALTHY,
                            message=f"no answer within {self._timeout:.0f}s",
                            latency_ms=round(self._timeout * 1000, 2),
                            critical=check.critical,
                            reason="timeout",
                        )
            finally:
                pool.shutdown(wait=False, cancel_futures=True)

            for name, (check, _) in pending.items():
                if check.critical:
                    continue
                breaker = self._breakers.get(environment.name, name)
                if results[name].status is HealthStatus.HEALTHY:
                    breaker.record_success()
                else:
                    breaker.record_failure()

            ordered = {check.name: results[check.name] for check in checks}
            verdict = HealthVerdict(
                environment=environment.name, status=aggregate(ordered), checks=ordered
            )
            span.set_attribute(f"{ATTRIBUTE_PREFIX}verdict", verdict.status.value)
            level = logging.INFO if verdict.status is HealthStatus.HEALTHY else logging.WARNING
            logger.log(
                level,
                "health.verdict",
                extra={
                    "extra": {
                        "environment": environment.name,
                        "status": verdict.status.value,
                        "checks": {n: r.status.value for n, r in ordered.items()},
                    }
                },
            )
            return verdict
