"""Domain models for deployment orchestration and verification."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from deployguard.contracts.types import (
    DeploymentState,
    HealthStatus,
    RecordKind,
    StepStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitoringToggles(BaseModel):
    """Per-environment switches for the optional monitoring dependencies."""

    model_config = ConfigDict(frozen=True)

    error_tracking: bool = False
    feature_flags: bool = False
    metrics: bool = False

    def enabled(self) -> list[str]:
        return [name for name, on in self.model_dump().items() if on]


class DeploySubStep(BaseModel):
    """A command run on the remote host after the push, in order."""

    model_config = ConfigDict(frozen=True)

    name: str
    command: tuple[str, ...]


class EnvironmentDescriptor(BaseModel):
    """Resolved deployment target for one named environment."""

    model_config = ConfigDict(frozen=True)

    name: str
    subdomain: str
    branch: str
    app: str
    domain: str
    ssl: bool = True
    monitoring: MonitoringToggles = Field(default_factory=MonitoringToggles)
    post_deploy: tuple[DeploySubStep, ...] = ()

    @property
    def url(self) -> str:
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self.domain}"


class CommandResult(BaseModel):
    """Outcome of a single remote command."""

    args: tuple[str, ...]
    stdout: str = ""
    stderr: str = ""
    exit_code: int
    duration_s: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class StepOutcome(BaseModel):
    """Result of one orchestrator step or sub-step."""

    name: str
    status: StepStatus
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    detail: str = ""


class StateTransition(BaseModel):
    state: DeploymentState
    at: datetime = Field(default_factory=utcnow)


class DeploymentRecord(BaseModel):
    """Audit record for one deployment (or rollback) attempt."""

    deployment_id: str = Field(default_factory=lambda: uuid4().hex)
    kind: RecordKind = RecordKind.DEPLOYMENT
    environment: str
    branch: str
    commit: str
    state: DeploymentState = DeploymentState.PENDING
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    steps: list[StepOutcome] = Field(default_factory=list)
    history: list[StateTransition] = Field(
        default_factory=lambda: [StateTransition(state=DeploymentState.PENDING)]
    )
    error: str | None = None
    error_type: str | None = None
    failed_step: str | None = None
    rollback_release: str | None = None
    verdict: HealthVerdict | None = None
    notified_channels: list[str] = Field(default_factory=list)
    source_deployment_id: str | None = None

    @property
    def elapsed_s(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    def summary(self) -> str:
        lines = [
            f"Deployment {self.deployment_id} ({self.kind.value})",
            f"  environment: {self.environment} branch: {self.branch} commit: {self.commit}",
            f"  state: {self.state.value}",
            f"  elapsed: {self.elapsed_s:.1f}s",
        ]
        if self.failed_step:
            lines.append(f"  failed step: {self.failed_step}")
        if self.error:
            lines.append(f"  error: {self.error}")
        if self.rollback_release:
            lines.append(f"  rolled back to: {self.rollback_release}")
        channels = ", ".join(self.notified_channels) or "none"
        lines.append(f"  notified: {channels}")
        return "\n".join(lines)


class ReleaseReference(BaseModel):
    """A previously deployed artifact on the remote host."""

    model_config = ConfigDict(frozen=True)

    label: str
    deployed_at: datetime | None = None
    active: bool = False
    source_deployment_id: str | None = None


class CheckResult(BaseModel):
    """Outcome of one health check."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: HealthStatus
    message: str = ""
    latency_ms: float = 0.0
    critical: bool = False
    reason: str | None = None


class HealthVerdict(BaseModel):
    """Aggregate result of one verification pass."""

    model_config = ConfigDict(frozen=True)

    environment: str
    status: HealthStatus
    checks: dict[str, CheckResult] = Field(default_factory=dict)
    checked_at: datetime = Field(default_factory=utcnow)

    @property
    def passed(self) -> bool:
        return self.status in (HealthStatus.HEALTHY, HealthStatus.DEGRADED)

    def failure_detail(self) -> str:
        failing = [
            f"{check.name}: {check.reason or check.status.value}"
            + (f" ({check.message})" if check.message else "")
            for check in self.checks.values()
            if check.status in (HealthStatus.UNHEALTHY, HealthStatus.SKIPPED)
        ]
        return "; ".join(failing) or self.status.value


class RollbackOutcome(BaseModel):
    """Result of a completed rollback command."""

    app: str
    release: ReleaseReference
    verdict: HealthVerdict | None = None
    command: CommandResult | None = None
    details: dict[str, Any] = Field(default_factory=dict)


DeploymentRecord.model_rebuild()
