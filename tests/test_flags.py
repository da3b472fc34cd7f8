"""Feature-flag client fallbacks and the checks built on monitoring dependencies."""

from __future__ import annotations

import httpx
import pytest

from deployguard.contracts.models import EnvironmentDescriptor
from deployguard.errors import DependencyUnavailable
from deployguard.health.checks import ErrorTrackingCheck, FeatureFlagCheck, MetricsCheck, parse_dsn
from deployguard.health.flags import FeatureFlagClient

FLAGS = [
    {"feature": {"name": "health_check_test"}, "enabled": True, "feature_state_value": None},
    {"feature": {"name": "max_tenants"}, "enabled": True, "feature_state_value": 25},
]

ENV = EnvironmentDescriptor(
    name="staging", subdomain="staging", branch="staging", app="restant-staging", domain="x.example.com"
)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_get_flag_reads_enabled_and_values() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=FLAGS)

    flags = FeatureFlagClient("https://flags.example.com/api/v1/", "env-key", _client(handler))
    assert flags.get_flag("health_check_test", False) is True
    assert flags.get_flag("max_tenants", 10) == 25
    assert flags.get_flag("unknown", "fallback") == "fallback"
    assert seen[0].headers["X-Environment-Key"] == "env-key"
    assert seen[0].url.path == "/api/v1/flags/"


def test_identity_flags_use_identities_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/identities/"
        assert request.url.params["identifier"] == "tenant-7"
        return httpx.Response(200, json={"flags": FLAGS})

    flags = FeatureFlagClient("https://flags.example.com/api/v1", "k", _client(handler))
    assert flags.get_flag("max_tenants", 0, identity="tenant-7") == 25


def test_get_flag_falls_back_to_default_when_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    flags = FeatureFlagClient("https://flags.example.com/api/v1/", "k", _client(handler))
    assert flags.get_flag("health_check_test", False) is False
    with pytest.raises(httpx.HTTPError):
        flags.health()


def test_get_flag_falls_back_on_server_error() -> None:
    flags = FeatureFlagClient(
        "https://flags.example.com/api/v1/", "k", _client(lambda r: httpx.Response(502))
    )
    assert flags.get_flag("max_tenants", 3) == 3


def test_feature_flag_check_without_client_is_unavailable() -> None:
    with pytest.raises(DependencyUnavailable):
        FeatureFlagCheck(None).run(ENV, 1.0)


def test_parse_dsn() -> None:
    dsn = parse_dsn("https://abc123@o99.ingest.example.io/4501")
    assert dsn.public_key == "abc123"
    assert dsn.project_id == "4501"
    assert dsn.base_url == "https://o99.ingest.example.io"
    with pytest.raises(ValueError):
        parse_dsn("not-a-dsn")


def test_error_tracking_check_requires_valid_dsn() -> None:
    client = _client(lambda r: httpx.Response(200))
    with pytest.raises(DependencyUnavailable):
        ErrorTrackingCheck(None, client).run(ENV, 1.0)
    with pytest.raises(DependencyUnavailable):
        ErrorTrackingCheck("garbage", client).run(ENV, 1.0)
    assert "o1.example.io" in ErrorTrackingCheck("https://k@o1.example.io/1", client).run(ENV, 1.0)


def test_metrics_check_sends_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/loki/api/v1/labels"
        assert request.headers["Authorization"].startswith("Basic ")
        return httpx.Response(200, json={"status": "success"})

    check = MetricsCheck("https://logs.example.net", "1234", "secret", _client(handler))
    assert check.run(ENV, 1.0) == "ingestion endpoint reachable"
