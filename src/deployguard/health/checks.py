"""Health checks run by the verifier.

Checks raise on failure and return a short message on success; the
verifier owns timing, timeouts and classification.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import ipaddress
import socket
import ssl
import time
from typing import Any, NamedTuple, Protocol
from urllib.parse import urlsplit

import httpx

from deployguard.config.settings import MonitoringSettings, VerificationSettings
from deployguard.contracts.models import EnvironmentDescriptor
from deployguard.errors import DeployGuardError, DependencyUnavailable
from deployguard.health.flags import FeatureFlagClient


class CheckFailed(DeployGuardError):
    """A check got an answer, and the answer was bad."""


class HealthCheck(Protocol):
    name: str
    critical: bool

    def run(self, environment: EnvironmentDescriptor, timeout: float) -> str:
        """Return a short status message or raise."""


class Dsn(NamedTuple):
    scheme: str
    public_key: str
    host: str
    project_id: str

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"


def parse_dsn(dsn: str) -> Dsn:
    """Split an error-tracking DSN (`scheme://key@host/project`)."""
    parts = urlsplit(dsn)
    project = parts.path.strip("/").split("/")[-1] if parts.path.strip("/") else ""
    if parts.scheme not in {"http", "https"} or not parts.username or not parts.hostname or not project:
        raise ValueError(f"Malformed DSN: {dsn!r}")
    host = parts.hostname if parts.port is None else f"{parts.hostname}:{parts.port}"
    return Dsn(parts.scheme, parts.username, host, project)


CertFetcher = Callable[[str, int, float], dict[str, Any]]


def fetch_certificate(host: str, port: int, timeout: float) -> dict[str, Any]:
    """Handshake with verification on and return the peer certificate."""
    context = ssl.create_default_context()
    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=host) as tls:
            return tls.getpeercert() or {}


def is_local_host(host: str) -> bool:
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


@dataclass(slots=True)
class EndpointCheck:
    """GET a path on the deployed app; any 2xx passes."""

    name: str
    path: str
    client: httpx.Client
    critical: bool = True

    def run(self, environment: EnvironmentDescriptor, timeout: float) -> str:
        response = self.client.get(environment.url + self.path, timeout=timeout)
        if response.status_code >= 300:
            raise CheckFailed(f"{self.path} returned HTTP {response.status_code}")
        return f"HTTP {response.status_code}"


@dataclass(slots=True)
class ErrorTrackingCheck:
    """Error-tracking ingestion host answers (anything below 500)."""

    dsn: str | None
    client: httpx.Client
    name: str = "error_tracking"
    critical: bool = False

    def run(self, environment: EnvironmentDescriptor, timeout: float) -> str:
        if not self.dsn:
            raise DependencyUnavailable("DSN not configured")
        try:
            parsed = parse_dsn(self.dsn)
        except ValueError as exc:
            raise DependencyUnavailable(str(exc)) from exc
        response = self.client.get(parsed.base_url + "/", timeout=timeout)
        if response.status_code >= 500:
            raise DependencyUnavailable(f"ingest host returned HTTP {response.status_code}")
        return f"reachable ({parsed.host})"


@dataclass(slots=True)
class FeatureFlagCheck:
    """Flag API serves flags; reports the `health_check_test` flag value."""

    flags: FeatureFlagClient | None
    name: str = "feature_flags"
    critical: bool = False

    def run(self, environment: EnvironmentDescriptor, timeout: float) -> str:
        if self.flags is None:
            raise DependencyUnavailable("environment key not configured")
        self.flags.health()
        value = self.flags.get_flag("health_check_test", False)
        return f"flags served (health_check_test={value})"


@dataclass(slots=True)
class MetricsCheck:
    """Log/metrics ingestion endpoint accepts our credentials."""

    logs_url: str | None
    user: str | None
    api_key: str | None
    client: httpx.Client
    name: str = "metrics"
    critical: bool = False

    def run(self, environment: EnvironmentDescriptor, timeout: float) -> str:
        if not self.logs_url or not self.api_key:
            raise DependencyUnavailable("ingestion endpoint not configured")
        auth = (self.user, self.api_key) if self.user else None
        response = self.client.get(
            self.logs_url.rstrip("/") + "/loki/api/v1/labels", auth=auth, timeout=timeout
        )
        if response.status_code >= 300:
            raise DependencyUnavailable(f"ingestion endpoint returned HTTP {response.status_code}")
        return "ingestion endpoint reachable"


@dataclass(slots=True)
class TlsCertificateCheck:
    """The certificate served for the app domain is valid for at least `min_days`.

    Local hosts and bare IP addresses are skipped.
    """

    min_days: float = 7.0
    port: int = 443
    fetch: CertFetcher = fetch_certificate
    clock: Callable[[], float] = time.time
    name: str = "tls"
    critical: bool = False

    def run(self, environment: EnvironmentDescriptor, timeout: float) -> str:
        host = environment.domain
        if is_local_host(host):
            return f"skipped for {host}"
        try:
            cert = self.fetch(host, self.port, timeout)
        except ssl.SSLCertVerificationError as exc:
            detail = getattr(exc, "verify_message", None) or exc
            raise CheckFailed(f"certificate rejected: {detail}") from exc
        except OSError as exc:
            raise DependencyUnavailable(f"TLS connection to {host} failed: {exc}") from exc
        not_after = cert.get("notAfter")
        if not not_after:
            raise CheckFailed(f"no certificate presented by {host}")
        days = (ssl.cert_time_to_seconds(not_after) - self.clock()) / 86400
        if days < 0:
            raise CheckFailed(f"certificate for {host} expired")
        if days < self.min_days:
            raise CheckFailed(f"certificate for {host} expires in {days:.1f} days")
        return f"certificate valid for {days:.0f} days"


@dataclass(slots=True)
class CheckSuite:
    """Builds the battery of checks for one environment."""

    client: httpx.Client
    verification: VerificationSettings
    monitoring: MonitoringSettings
    flags: FeatureFlagClient | None = None
    cert_fetcher: CertFetcher = fetch_certificate

    def for_environment(self, environment: EnvironmentDescriptor) -> list[HealthCheck]:
        checks: list[HealthCheck] = [
            EndpointCheck("database", self.verification.database_path, self.client),
            EndpointCheck("cache", self.verification.cache_path, self.client),
        ]
        toggles = environment.monitoring
        if toggles.error_tracking:
            checks.append(ErrorTrackingCheck(self.monitoring.sentry_dsn, self.client))
        if toggles.feature_flags:
            checks.append(FeatureFlagCheck(self.flags))
        if toggles.metrics:
            checks.append(
                MetricsCheck(
                    self.monitoring.grafana_logs_url,
                    self.monitoring.grafana_logs_user,
                    self.monitoring.grafana_api_key,
                    self.client,
                )
            )
        if environment.ssl and self.verification.tls_enabled:
            checks.append(
                TlsCertificateCheck(min_days=self.verification.tls_min_days, fetch=self.cert_fetcher)
            )
        return checks
