"""Aggregate health verdicts, per-check timeouts and breaker gating."""

from __future__ import annotations

import ssl
import threading

import httpx
import pytest

from deployguard.config.settings import MonitoringSettings, VerificationSettings
from deployguard.contracts.models import EnvironmentDescriptor, MonitoringToggles
from deployguard.contracts.types import CircuitState, HealthStatus
from deployguard.errors import DependencyUnavailable
from deployguard.health.checks import CheckFailed, CheckSuite, TlsCertificateCheck, is_local_host
from deployguard.health.circuit_breaker import BreakerRegistry
from deployguard.health.verifier import HealthVerifier

DSN = "https://public@o1.ingest.example.io/42"


def _descriptor(name: str = "staging", ssl_enabled: bool = False) -> EnvironmentDescriptor:
    return EnvironmentDescriptor(
        name=name,
        subdomain=name,
        branch=name,
        app=f"restant-{name}",
        domain=f"restant.{name}.example.com",
        ssl=ssl_enabled,
        monitoring=MonitoringToggles(error_tracking=True),
    )


class FakeApp:
    """Routes requests by host; counts calls to the error-tracking host."""

    def __init__(self) -> None:
        self.cache_status = 200
        self.database_timeout = False
        self.tracking_up = True
        self.tracking_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "o1.ingest.example.io":
            self.tracking_calls += 1
            if not self.tracking_up:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)
        if request.url.path == "/health/database":
            if self.database_timeout:
                raise httpx.ReadTimeout("read timed out", request=request)
            return httpx.Response(200, json={"status": "ok"})
        if request.url.path == "/health/cache":
            return httpx.Response(self.cache_status)
        return httpx.Response(404)


def _verifier(app: FakeApp, clock=None, threshold: int = 3, cert_fetcher=None) -> HealthVerifier:
    client = httpx.Client(transport=httpx.MockTransport(app))
    suite = CheckSuite(client, VerificationSettings(), MonitoringSettings(sentry_dsn=DSN))
    if cert_fetcher is not None:
        suite.cert_fetcher = cert_fetcher
    breakers = BreakerRegistry(
        failure_threshold=threshold,
        recovery_timeout=30.0,
        **({"clock": clock} if clock else {}),
    )
    return HealthVerifier(suite.for_environment, breakers, timeout=2.0)


def test_all_checks_pass_is_healthy() -> None:
    verdict = _verifier(FakeApp()).check_all(_descriptor())
    assert verdict.status is HealthStatus.HEALTHY
    assert list(verdict.checks) == ["database", "cache", "error_tracking"]
    assert all(check.status is HealthStatus.HEALTHY for check in verdict.checks.values())


def test_critical_failure_is_unhealthy() -> None:
    app = FakeApp()
    app.cache_status = 500
    verdict = _verifier(app).check_all(_descriptor())
    assert verdict.status is HealthStatus.UNHEALTHY
    assert verdict.checks["cache"].status is HealthStatus.UNHEALTHY
    assert "HTTP 500" in verdict.checks["cache"].message
    assert not verdict.passed
    assert "cache" in verdict.failure_detail()


def test_optional_failure_only_degrades() -> None:
    app = FakeApp()
    app.tracking_up = False
    verdict = _verifier(app).check_all(_descriptor())
    assert verdict.status is HealthStatus.DEGRADED
    assert verdict.checks["error_tracking"].reason == "unavailable"
    assert verdict.passed


def test_timeout_has_distinct_reason() -> None:
    app = FakeApp()
    app.database_timeout = True
    verdict = _verifier(app).check_all(_descriptor())
    assert verdict.status is HealthStatus.UNHEALTHY
    assert verdict.checks["database"].reason == "timeout"


def test_breaker_opens_after_threshold_and_skips_remote_call() -> None:
    now = [0.0]
    app = FakeApp()
    app.tracking_up = False
    verifier = _verifier(app, clock=lambda: now[0])
    env = _descriptor()

    for _ in range(3):
        verifier.check_all(env)
    assert app.tracking_calls == 3
    assert verifier.breakers.get("staging", "error_tracking").state is CircuitState.OPEN

    verdict = verifier.check_all(env)
    assert app.tracking_calls == 3
    assert verdict.checks["error_tracking"].status is HealthStatus.SKIPPED
    assert verdict.checks["error_tracking"].reason == "circuit_open"
    assert verdict.status is HealthStatus.DEGRADED

    now[0] = 31.0
    app.tracking_up = True
    verdict = verifier.check_all(env)
    assert app.tracking_calls == 4
    assert verdict.status is HealthStatus.HEALTHY
    assert verifier.breakers.get("staging", "error_tracking").state is CircuitState.CLOSED


def test_breakers_are_scoped_per_environment() -> None:
    app = FakeApp()
    app.tracking_up = False
    verifier = _verifier(app, clock=lambda: 0.0, threshold=1)
    verifier.check_all(_descriptor("staging"))
    assert verifier.breakers.get("staging", "error_tracking").state is CircuitState.OPEN

    verifier.check_all(_descriptor("production"))
    assert app.tracking_calls == 2
    assert verifier.breakers.get("production", "error_tracking").state is CircuitState.OPEN


def test_critical_checks_ignore_breakers() -> None:
    app = FakeApp()
    app.cache_status = 503
    verifier = _verifier(app, clock=lambda: 0.0, threshold=1)
    for _ in range(3):
        verdict = verifier.check_all(_descriptor())
        assert verdict.checks["cache"].status is HealthStatus.UNHEALTHY
    assert verifier.breakers.snapshot("staging").keys() == {"error_tracking"}


def test_hung_check_is_reported_as_timeout() -> None:
    release = threading.Event()

    class HangingCheck:
        name = "database"
        critical = True

        def run(self, environment, timeout):
            release.wait(5)
            return "late"

    class QuickCheck:
        name = "cache"
        critical = True

        def run(self, environment, timeout):
            return "ok"

    verifier = HealthVerifier(
        lambda env: [HangingCheck(), QuickCheck()],
        BreakerRegistry(),
        timeout=0.05,
        grace=0.05,
    )
    try:
        verdict = verifier.check_all(_descriptor())
    finally:
        release.set()
    assert verdict.status is HealthStatus.UNHEALTHY
    assert verdict.checks["database"].reason == "timeout"
    assert verdict.checks["cache"].status is HealthStatus.HEALTHY


NOW = ssl.cert_time_to_seconds("Jun  1 00:00:00 2030 GMT")


def _cert(not_after: str):
    def fetch(host: str, port: int, timeout: float) -> dict[str, str]:
        return {"notAfter": not_after}

    return fetch


def test_tls_check_runs_for_ssl_environments() -> None:
    verifier = _verifier(FakeApp(), cert_fetcher=_cert("Jan  1 00:00:00 2099 GMT"))
    verdict = verifier.check_all(_descriptor(ssl_enabled=True))
    assert list(verdict.checks) == ["database", "cache", "error_tracking", "tls"]
    assert verdict.checks["tls"].critical is False
    assert verdict.status is HealthStatus.HEALTHY
    assert "tls" not in verifier.check_all(_descriptor()).checks


def test_rejected_certificate_degrades_verdict() -> None:
    def rejecting(host: str, port: int, timeout: float) -> dict[str, str]:
        raise ssl.SSLCertVerificationError("certificate has expired")

    verdict = _verifier(FakeApp(), cert_fetcher=rejecting).check_all(_descriptor(ssl_enabled=True))
    assert verdict.status is HealthStatus.DEGRADED
    assert verdict.checks["tls"].status is HealthStatus.UNHEALTHY
    assert "certificate rejected" in verdict.checks["tls"].message
    assert verdict.passed


def test_tls_failures_open_the_breaker() -> None:
    calls: list[str] = []

    def refusing(host: str, port: int, timeout: float) -> dict[str, str]:
        calls.append(host)
        raise ConnectionRefusedError("connection refused")

    verifier = _verifier(FakeApp(), threshold=2, cert_fetcher=refusing)
    for _ in range(2):
        verdict = verifier.check_all(_descriptor(ssl_enabled=True))
        assert verdict.checks["tls"].reason == "unavailable"
    verdict = verifier.check_all(_descriptor(ssl_enabled=True))
    assert verdict.checks["tls"].status is HealthStatus.SKIPPED
    assert verdict.checks["tls"].reason == "circuit_open"
    assert len(calls) == 2


def test_certificate_close_to_expiry_fails() -> None:
    check = TlsCertificateCheck(
        min_days=7.0, fetch=_cert("Jun  5 00:00:00 2030 GMT"), clock=lambda: NOW
    )
    with pytest.raises(CheckFailed, match="expires in 4.0 days"):
        check.run(_descriptor(ssl_enabled=True), 2.0)


def test_expired_certificate_fails() -> None:
    check = TlsCertificateCheck(fetch=_cert("May  1 00:00:00 2030 GMT"), clock=lambda: NOW)
    with pytest.raises(CheckFailed, match="expired"):
        check.run(_descriptor(ssl_enabled=True), 2.0)


def test_certificate_valid_beyond_threshold_passes() -> None:
    check = TlsCertificateCheck(fetch=_cert("Jul  1 00:00:00 2030 GMT"), clock=lambda: NOW)
    assert check.run(_descriptor(ssl_enabled=True), 2.0) == "certificate valid for 30 days"


def test_unreachable_tls_endpoint_is_unavailable() -> None:
    def timing_out(host: str, port: int, timeout: float) -> dict[str, str]:
        raise TimeoutError("timed out")

    check = TlsCertificateCheck(fetch=timing_out)
    with pytest.raises(DependencyUnavailable):
        check.run(_descriptor(ssl_enabled=True), 2.0)


def test_local_hosts_skip_certificate_check() -> None:
    def unreachable(host: str, port: int, timeout: float) -> dict[str, str]:
        raise AssertionError("must not connect")

    local = EnvironmentDescriptor(
        name="dev", subdomain="dev", branch="dev", app="restant-dev", domain="127.0.0.1"
    )
    assert TlsCertificateCheck(fetch=unreachable).run(local, 2.0) == "skipped for 127.0.0.1"
    assert is_local_host("localhost")
    assert is_local_host("::1")
    assert not is_local_host("restant.main.example.com")


def test_tls_check_can_be_switched_off() -> None:
    client = httpx.Client(transport=httpx.MockTransport(FakeApp()))
    suite = CheckSuite(client, VerificationSettings(tls_enabled=False), MonitoringSettings())
    names = [check.name for check in suite.for_environment(_descriptor(ssl_enabled=True))]
    assert names == ["database", "cache", "error_tracking"]
