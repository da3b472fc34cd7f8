"""Centralized settings for the deployment orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from deployguard.config.config import (
    get_bool,
    get_config_value,
    get_csv,
    get_float,
    get_int,
)

DEFAULT_ENVIRONMENTS_FILE = Path(__file__).with_name("environments.yaml")


@dataclass(slots=True)
class RemoteSettings:
    host: str = "localhost"
    user: str = "dokku"
    ssh_key_path: str = "~/.ssh/dokku_deploy"
    port: int = 22
    connect_timeout_s: float = 10.0
    command_timeout_s: float = 120.0
    deploy_timeout_s: float = 600.0
    deploy_ref: str = "refs/heads/main"


@dataclass(slots=True)
class VerificationSettings:
    attempts: int = 3
    delay_s: float = 10.0
    backoff: float = 1.0
    check_timeout_s: float = 10.0
    failure_threshold: int = 5
    recovery_timeout_s: float = 60.0
    max_deployment_s: float = 900.0
    database_path: str = "/health/database"
    cache_path: str = "/health/cache"
    tls_enabled: bool = True
    tls_min_days: float = 7.0


@dataclass(slots=True)
class MonitoringSettings:
    sentry_dsn: str | None = None
    flagsmith_api_url: str = "https://edge.api.flagsmith.com/api/v1/"
    flagsmith_environment_key: str | None = None
    grafana_logs_url: str | None = None
    grafana_logs_user: str | None = None
    grafana_api_key: str | None = None


@dataclass(slots=True)
class ChannelSettings:
    enabled: bool = False
    url: str | None = None
    auth_header: str | None = None
    recipients: list[str] = field(default_factory=list)


@dataclass(slots=True)
class NotificationSettings:
    chat: ChannelSettings = field(default_factory=ChannelSettings)
    email: ChannelSettings = field(default_factory=ChannelSettings)
    webhook: ChannelSettings = field(default_factory=ChannelSettings)
    timeout_s: float = 10.0
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_sender: str = "deployments@localhost"


@dataclass(slots=True)
class DeploySettings:
    app_env: str = "production"
    service_name: str = "deployguard"
    app_version: str = "0.1.0"
    environments_file: Path = DEFAULT_ENVIRONMENTS_FILE
    log_dir: Path = Path("deployment-logs")
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    verification: VerificationSettings = field(default_factory=VerificationSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)


def _notification_settings() -> NotificationSettings:
    webhook_override = get_config_value("WEBHOOK_URL")
    webhook = ChannelSettings(
        enabled=get_bool("DEPLOYMENT_WEBHOOK_ENABLED", False) or bool(webhook_override),
        url=webhook_override or get_config_value("DEPLOYMENT_WEBHOOK_URL"),
        auth_header=get_config_value("DEPLOYMENT_WEBHOOK_AUTH_HEADER"),
    )
    return NotificationSettings(
        chat=ChannelSettings(
            enabled=get_bool("DEPLOYMENT_SLACK_ENABLED", False),
            url=get_config_value("DEPLOYMENT_SLACK_WEBHOOK_URL"),
        ),
        email=ChannelSettings(
            enabled=get_bool("DEPLOYMENT_EMAIL_ENABLED", False),
            recipients=get_csv("DEPLOYMENT_EMAIL_RECIPIENTS"),
        ),
        webhook=webhook,
        timeout_s=get_float("DEPLOYMENT_NOTIFICATION_TIMEOUT", 10.0),
        smtp_host=get_config_value("MAIL_HOST", "localhost") or "localhost",
        smtp_port=get_int("MAIL_PORT", 25),
        smtp_sender=get_config_value("MAIL_FROM_ADDRESS", "deployments@localhost")
        or "deployments@localhost",
    )


@lru_cache
def get_settings() -> DeploySettings:
    environments_file = get_config_value("DEPLOYGUARD_ENVIRONMENTS_FILE")
    return DeploySettings(
        app_env=get_config_value("APP_ENV", "production") or "production",
        service_name=get_config_value("SERVICE_NAME", "deployguard") or "deployguard",
        app_version=get_config_value("APP_VERSION", "0.1.0") or "0.1.0",
        environments_file=Path(environments_file) if environments_file else DEFAULT_ENVIRONMENTS_FILE,
        log_dir=Path(get_config_value("DEPLOYMENT_LOG_DIR", "deployment-logs") or "deployment-logs"),
        remote=RemoteSettings(
            host=get_config_value("DOKKU_HOST", "localhost") or "localhost",
            user=get_config_value("DOKKU_USER", "dokku") or "dokku",
            ssh_key_path=get_config_value("SSH_KEY", "~/.ssh/dokku_deploy") or "~/.ssh/dokku_deploy",
            port=get_int("DOKKU_SSH_PORT", 22),
            connect_timeout_s=get_float("DOKKU_CONNECT_TIMEOUT", 10.0),
            command_timeout_s=get_float("DOKKU_COMMAND_TIMEOUT", 120.0),
            deploy_timeout_s=get_float("DEPLOYMENT_BUILD_TIMEOUT", 600.0),
        ),
        verification=VerificationSettings(
            attempts=max(1, get_int("DEPLOYMENT_HEALTH_CHECK_RETRIES", 3)),
            delay_s=get_float("DEPLOYMENT_HEALTH_CHECK_DELAY", 10.0),
            backoff=get_float("DEPLOYMENT_HEALTH_CHECK_BACKOFF", 1.0),
            check_timeout_s=get_float("DEPLOYMENT_HEALTH_CHECK_TIMEOUT", 10.0),
            failure_threshold=max(1, get_int("HEALTH_CHECK_FAILURE_THRESHOLD", 5)),
            recovery_timeout_s=get_float("HEALTH_CHECK_RECOVERY_TIMEOUT", 60.0),
            max_deployment_s=get_float("HEALTH_CHECK_MAX_DEPLOYMENT_TIME", 900.0),
            tls_enabled=get_bool("HEALTH_CHECK_SSL_ENABLED", True),
            tls_min_days=get_float("HEALTH_CHECK_SSL_CRITICAL_DAYS", 7.0),
        ),
        monitoring=MonitoringSettings(
            sentry_dsn=get_config_value("SENTRY_DSN"),
            flagsmith_api_url=get_config_value(
                "FLAGSMITH_API_URL", "https://edge.api.flagsmith.com/api/v1/"
            )
            or "https://edge.api.flagsmith.com/api/v1/",
            flagsmith_environment_key=get_config_value("FLAGSMITH_ENVIRONMENT_KEY"),
            grafana_logs_url=get_config_value("GRAFANA_LOGS_URL"),
            grafana_logs_user=get_config_value("GRAFANA_LOGS_USER"),
            grafana_api_key=get_config_value("GRAFANA_CLOUD_API_KEY"),
        ),
        notifications=_notification_settings(),
    )
