"""Exception taxonomy for DeployGuard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deployguard.contracts.models import CommandResult, DeploymentRecord


class DeployGuardError(Exception):
    """Base error. `record` is set when an attempt was recorded before failing."""

    def __init__(self, message: str, *, record: DeploymentRecord | None = None) -> None:
        super().__init__(message)
        self.record = record


class ConfigurationError(DeployGuardError):
    """Unknown environment, branch mismatch, missing secret or malformed setting."""


class DeploymentInProgress(DeployGuardError):
    """Another deployment already holds the environment lease."""


class ExecutionError(DeployGuardError):
    """A remote command exited non-zero or timed out."""

    def __init__(
        self,
        message: str,
        result: CommandResult | None = None,
        *,
        record: DeploymentRecord | None = None,
    ) -> None:
        super().__init__(message, record=record)
        self.result = result


class DeploymentTimeout(DeployGuardError):
    """The attempt exceeded its maximum duration."""


class DeploymentCancelled(DeployGuardError):
    """The attempt was cancelled by an operator."""


class VerificationFailure(DeployGuardError):
    """Health stayed unhealthy for every configured verification attempt."""


class RollbackError(DeployGuardError):
    """Rollback could not be carried out; requires operator action."""


class ReleaseNotFound(RollbackError):
    pass


class NoPriorRelease(RollbackError):
    pass


class RollbackCommandFailed(RollbackError):
    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class DependencyUnavailable(DeployGuardError):
    """An optional monitoring dependency could not be reached."""


class NotificationError(DeployGuardError):
    """A notification channel failed to deliver."""


class InvalidTransition(DeployGuardError):
    """A state transition not allowed by the deployment state machine."""
