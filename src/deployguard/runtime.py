"""Explicit wiring of DeployGuard collaborators from settings."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import smtplib

import httpx

from deployguard.config.adapter import mask_secret
from deployguard.config.environments import EnvironmentConfig, EnvironmentResolver
from deployguard.config.settings import DeploySettings, get_settings
from deployguard.executor.remote import RemoteExecutor, RemoteHost, SSHExecutor
from deployguard.health.checks import CertFetcher, CheckSuite, fetch_certificate
from deployguard.health.circuit_breaker import BreakerRegistry
from deployguard.health.flags import FeatureFlagClient
from deployguard.health.verifier import HealthVerifier
from deployguard.notifications.channels import (
    ChatWebhookChannel,
    EmailChannel,
    NotificationChannel,
    WebhookChannel,
)
from deployguard.notifications.dispatcher import NotificationDispatcher
from deployguard.observability.logging import LokiLogHandler, configure_logging
from deployguard.observability.telemetry import setup_tracing
from deployguard.orchestrator.orchestrator import Orchestrator
from deployguard.orchestrator.rollback import RollbackController
from deployguard.orchestrator.store import DeploymentStore, JsonFileDeploymentStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: DeploySettings
    resolver: EnvironmentResolver
    host: RemoteHost
    verifier: HealthVerifier
    rollback: RollbackController
    dispatcher: NotificationDispatcher
    orchestrator: Orchestrator
    client: httpx.Client

    def close(self) -> None:
        self.client.close()


def configure_observability(settings: DeploySettings, level: int = logging.INFO) -> None:
    handlers: list[logging.Handler] = []
    monitoring = settings.monitoring
    if monitoring.grafana_logs_url and monitoring.grafana_api_key:
        handlers.append(
            LokiLogHandler(
                monitoring.grafana_logs_url,
                user=monitoring.grafana_logs_user,
                api_key=monitoring.grafana_api_key,
                labels={"service": settings.service_name, "env": settings.app_env},
            )
        )
    configure_logging(level, extra_handlers=handlers)
    setup_tracing(settings)


def build_channels(
    settings: DeploySettings,
    client: httpx.Client,
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
) -> list[NotificationChannel]:
    notifications = settings.notifications
    channels: list[NotificationChannel] = []
    if notifications.chat.enabled:
        channels.append(
            ChatWebhookChannel(notifications.chat.url, client, timeout=notifications.timeout_s)
        )
    if notifications.email.enabled:
        channels.append(
            EmailChannel(
                recipients=notifications.email.recipients,
                sender=notifications.smtp_sender,
                host=notifications.smtp_host,
                port=notifications.smtp_port,
                timeout=notifications.timeout_s,
                smtp_factory=smtp_factory,
            )
        )
    if notifications.webhook.enabled:
        channels.append(
            WebhookChannel(
                notifications.webhook.url,
                client,
                auth_header=notifications.webhook.auth_header,
                timeout=notifications.timeout_s,
            )
        )
    return channels


def build_runtime(
    settings: DeploySettings | None = None,
    *,
    executor: RemoteExecutor | None = None,
    client: httpx.Client | None = None,
    store: DeploymentStore | None = None,
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    cert_fetcher: CertFetcher = fetch_certificate,
) -> Runtime:
    settings = settings or get_settings()
    resolver = EnvironmentResolver(EnvironmentConfig.load(settings.environments_file))
    remote = settings.remote
    executor = executor or SSHExecutor(
        host=remote.host,
        user=remote.user,
        key_path=remote.ssh_key_path,
        port=remote.port,
        connect_timeout=remote.connect_timeout_s,
        default_timeout=remote.command_timeout_s,
        deploy_ref=remote.deploy_ref,
    )
    host = RemoteHost(executor, timeout=remote.command_timeout_s)
    verification = settings.verification
    client = client or httpx.Client(timeout=verification.check_timeout_s, follow_redirects=True)

    monitoring = settings.monitoring
    flags = None
    if monitoring.flagsmith_environment_key:
        flags = FeatureFlagClient(
            monitoring.flagsmith_api_url,
            monitoring.flagsmith_environment_key,
            client,
            timeout=verification.check_timeout_s,
        )
    suite = CheckSuite(client, verification, monitoring, flags, cert_fetcher)
    breakers = BreakerRegistry(
        failure_threshold=verification.failure_threshold,
        recovery_timeout=verification.recovery_timeout_s,
    )
    verifier = HealthVerifier(
        suite.for_environment, breakers, timeout=verification.check_timeout_s
    )
    rollback = RollbackController(host, verifier, resolver)
    dispatcher = NotificationDispatcher(build_channels(settings, client, smtp_factory))
    orchestrator = Orchestrator(
        resolver,
        host,
        executor,
        verifier,
        rollback,
        dispatcher,
        store=store if store is not None else JsonFileDeploymentStore(settings.log_dir),
        verification=verification,
        remote=remote,
    )
    logger.info(
        "runtime.ready",
        extra={
            "extra": {
                "remote_host": remote.host,
                "environments": resolver.names(),
                "channels": dispatcher.channel_names,
                "sentry_dsn": mask_secret(monitoring.sentry_dsn),
                "flags_key": mask_secret(monitoring.flagsmith_environment_key),
            }
        },
    )
    return Runtime(
        settings=settings,
        resolver=resolver,
        host=host,
        verifier=verifier,
        rollback=rollback,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        client=client,
    )
