"""Environment name → deployment target resolution."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
import re
from typing import Any

import yaml  # type: ignore[import-untyped]

from deployguard.contracts.models import (
    DeploySubStep,
    EnvironmentDescriptor,
    MonitoringToggles,
)
from deployguard.errors import ConfigurationError
from deployguard.executor import commands

FEATURE_SLUG = re.compile(r"^[a-z0-9][a-z0-9-]{0,40}$")

# Secrets that must be present before deploying an environment that has the
# matching monitoring dependency enabled.
REQUIRED_SECRETS: dict[str, tuple[str, ...]] = {
    "error_tracking": ("SENTRY_DSN",),
    "feature_flags": ("FLAGSMITH_ENVIRONMENT_KEY",),
    "metrics": ("GRAFANA_CLOUD_API_KEY",),
}


def _sub_steps(raw: list[dict[str, Any]] | None, app: str) -> tuple[DeploySubStep, ...]:
    steps = []
    for item in raw or []:
        command = tuple(str(arg).replace("{app}", app) for arg in item["command"])
        try:
            commands.validate_args(command)
        except ValueError as exc:
            raise ConfigurationError(f"post_deploy step {item['name']!r} for {app}: {exc}") from exc
        steps.append(DeploySubStep(name=str(item["name"]), command=command))
    return tuple(steps)


@dataclass(slots=True)
class EnvironmentConfig:
    """Static environment configuration loaded once at startup."""

    base_domain: str
    app_prefix: str
    environments: dict[str, dict[str, Any]]
    feature: dict[str, Any] | None = None

    @classmethod
    def load(cls, path: Path) -> EnvironmentConfig:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except FileNotFoundError as exc:
            raise ConfigurationError(f"Environments file not found: {path}") from exc
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> EnvironmentConfig:
        if "base_domain" not in data:
            raise ConfigurationError("Environments config requires base_domain")
        return cls(
            base_domain=str(data["base_domain"]),
            app_prefix=str(data.get("app_prefix", "app")),
            environments=dict(data.get("environments") or {}),
            feature=data.get("feature"),
        )


@dataclass(slots=True)
class EnvironmentResolver:
    """Resolves environment names to immutable descriptors.

    Descriptors are built eagerly for the named environments; feature-slug
    environments are derived from the `feature` template on first lookup
    and cached.
    """

    config: EnvironmentConfig
    _descriptors: dict[str, EnvironmentDescriptor] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        for name, raw in self.config.environments.items():
            self._descriptors[name] = self._build(name, raw)

    def _build(self, name: str, raw: Mapping[str, Any]) -> EnvironmentDescriptor:
        try:
            subdomain = str(raw["subdomain"])
            branch = str(raw["branch"])
            app = str(raw["app"])
        except KeyError as exc:
            raise ConfigurationError(f"Environment {name!r} is missing {exc.args[0]!r}") from exc
        domain = raw.get("domain") or f"{self.config.app_prefix}.{subdomain}.{self.config.base_domain}"
        return EnvironmentDescriptor(
            name=name,
            subdomain=subdomain,
            branch=branch,
            app=app,
            domain=str(domain),
            ssl=bool(raw.get("ssl", True)),
            monitoring=MonitoringToggles(**(raw.get("monitoring") or {})),
            post_deploy=_sub_steps(raw.get("post_deploy"), app),
        )

    def names(self) -> list[str]:
        return sorted(self._descriptors)

    def resolve(self, name: str) -> EnvironmentDescriptor:
        if name in self._descriptors:
            return self._descriptors[name]
        template = self.config.feature
        if template is not None and FEATURE_SLUG.match(name):
            raw = dict(template)
            raw.update(
                subdomain=name,
                branch=f"{template.get('branch_prefix', 'feature/')}{name}",
                app=f"{self.config.app_prefix}-{name}",
            )
            descriptor = self._build(name, raw)
            self._descriptors[name] = descriptor
            return descriptor
        raise ConfigurationError(f"Unknown environment: {name}")

    def find_by_app(self, app: str) -> EnvironmentDescriptor | None:
        for descriptor in self._descriptors.values():
            if descriptor.app == app:
                return descriptor
        prefix = f"{self.config.app_prefix}-"
        if self.config.feature is not None and app.startswith(prefix):
            slug = app[len(prefix) :]
            if FEATURE_SLUG.match(slug):
                return self.resolve(slug)
        return None


def missing_secrets(
    descriptor: EnvironmentDescriptor, lookup: Callable[[str], str | None]
) -> list[str]:
    """Secrets required by the descriptor's enabled monitoring that are not set."""
    missing: list[str] = []
    for service in descriptor.monitoring.enabled():
        for key in REQUIRED_SECRETS.get(service, ()):
            if not lookup(key):
                missing.append(key)
    return missing
