"""OpenTelemetry tracing for deployment attempts.

Spans opened by the orchestrator carry `deployguard.*` attributes taken
from the deployment record, so a trace can be joined to its audit record.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from deployguard.config.settings import DeploySettings
    from deployguard.contracts.models import DeploymentRecord

logger = logging.getLogger(__name__)

DISABLE_ENV = "DEPLOYGUARD_DISABLE_TRACING"
ATTRIBUTE_PREFIX = "deployguard."


class _NoOpSpan:
    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def set_attribute(self, key: str, value: Any) -> None:
        return None

    def set_attributes(self, attributes: dict[str, Any]) -> None:
        return None


class _NoOpTracer:
    def start_as_current_span(self, name: str, attributes: dict[str, Any] | None = None) -> _NoOpSpan:
        return _NoOpSpan()


_NOOP_TRACER = _NoOpTracer()


def tracing_disabled() -> bool:
    return os.getenv(DISABLE_ENV) == "1"


def setup_tracing(settings: DeploySettings, exporter: Any | None = None) -> None:
    """Install a tracer provider describing this deployer instance.

    The resource names the service, its version, the environment it runs in
    and the PaaS host it deploys to. Spans go to `exporter`, or the console.
    """
    if tracing_disabled():
        logger.info("tracing.disabled", extra={"extra": {"service": settings.service_name}})
        return
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    provider = TracerProvider(resource=Resource.create(resource_attributes(settings)))
    provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    logger.info(
        "tracing.configured",
        extra={"extra": {"service": settings.service_name, "remote_host": settings.remote.host}},
    )


def resource_attributes(settings: DeploySettings) -> dict[str, str]:
    return {
        "service.name": settings.service_name,
        "service.version": settings.app_version,
        "deployment.environment": settings.app_env,
        f"{ATTRIBUTE_PREFIX}remote_host": settings.remote.host,
    }


def record_attributes(record: DeploymentRecord) -> dict[str, str]:
    """Span attributes for a deployment record; unset fields are left out."""
    values = {
        "deployment_id": record.deployment_id,
        "kind": record.kind.value,
        "environment": record.environment,
        "state": record.state.value,
        "commit": record.commit,
        "failed_step": record.failed_step,
        "error_type": record.error_type,
        "rollback_release": record.rollback_release,
        "source_deployment_id": record.source_deployment_id,
    }
    return {f"{ATTRIBUTE_PREFIX}{key}": value for key, value in values.items() if value}


def annotate(span: Any, record: DeploymentRecord) -> None:
    span.set_attributes(record_attributes(record))


def get_tracer(name: str) -> Any:
    """Return a tracer, or a no-op one when tracing is disabled."""
    if tracing_disabled():
        return _NOOP_TRACER
    from opentelemetry import trace

    return trace.get_tracer(name)
