"""Notification event contracts for DeployGuard."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from deployguard.contracts.models import utcnow
from deployguard.contracts.types import NotificationType, Severity


class NotificationEvent(BaseModel):
    """Lifecycle event handed once to the dispatcher."""

    event_id: UUID = Field(default_factory=uuid4)
    type: NotificationType
    environment: str
    branch: str | None = None
    commit: str | None = None
    severity: Severity = Severity.INFO
    url: str | None = None
    deployment_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def message(self) -> str:
        if self.type is NotificationType.STARTED:
            return f"Deployment started for {self.environment} environment from branch {self.branch}"
        if self.type is NotificationType.SUCCESS:
            return f"Deployment successful for {self.environment} environment"
        if self.type is NotificationType.FAILURE:
            return f"Deployment failed for {self.environment} environment"
        if self.type is NotificationType.ROLLBACK:
            reason = self.details.get("reason", "unspecified")
            return f"Rollback executed for {self.environment} environment. Reason: {reason}"
        return (
            f"Rollback FAILED for {self.environment} environment; "
            "manual intervention required"
        )


def started(
    environment: str, branch: str, commit: str, **details: Any
) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.STARTED,
        environment=environment,
        branch=branch,
        commit=commit,
        details=details,
    )


def success(
    environment: str, branch: str, commit: str, *, url: str | None = None, **details: Any
) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.SUCCESS,
        environment=environment,
        branch=branch,
        commit=commit,
        url=url,
        details=details,
    )


def failure(
    environment: str, branch: str, commit: str, error: str, **details: Any
) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.FAILURE,
        environment=environment,
        branch=branch,
        commit=commit,
        severity=Severity.ERROR,
        details={"error": error, **details},
    )


def rollback(
    environment: str, reason: str, *, branch: str | None = None, commit: str | None = None,
    **details: Any,
) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.ROLLBACK,
        environment=environment,
        branch=branch,
        commit=commit,
        severity=Severity.WARNING,
        details={"reason": reason, **details},
    )


def rollback_failed(
    environment: str, error: str, *, branch: str | None = None, commit: str | None = None,
    **details: Any,
) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.ROLLBACK_FAILED,
        environment=environment,
        branch=branch,
        commit=commit,
        severity=Severity.CRITICAL,
        details={"error": error, **details},
    )
