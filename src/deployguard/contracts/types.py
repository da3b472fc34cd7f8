"""Shared enums for DeployGuard contracts."""

from __future__ import annotations

from enum import Enum


class DeploymentState(str, Enum):
    """Lifecycle states of a deployment record."""

    PENDING = "PENDING"
    VALIDATING = "VALIDATING"
    DEPLOYING = "DEPLOYING"
    VERIFYING = "VERIFYING"
    ROLLING_BACK = "ROLLING_BACK"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        DeploymentState.SUCCEEDED,
        DeploymentState.FAILED,
        DeploymentState.ROLLED_BACK,
        DeploymentState.ROLLBACK_FAILED,
    }
)


class RecordKind(str, Enum):
    """Whether a record tracks a deployment or a standalone rollback."""

    DEPLOYMENT = "deployment"
    ROLLBACK = "rollback"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class HealthStatus(str, Enum):
    """Health verdict and per-check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    SKIPPED = "skipped"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class NotificationType(str, Enum):
    """Deployment lifecycle notification types."""

    STARTED = "started"
    SUCCESS = "success"
    FAILURE = "failure"
    ROLLBACK = "rollback"
    ROLLBACK_FAILED = "rollback_failed"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
