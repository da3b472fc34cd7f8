"""Deployment record state machine."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from deployguard.contracts.models import DeploymentRecord, StateTransition, utcnow
from deployguard.contracts.types import DeploymentState as S
from deployguard.contracts.types import RecordKind
from deployguard.errors import InvalidTransition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Transition:
    trigger: str
    source: S
    dest: S


DEPLOYMENT_TRANSITIONS: tuple[_Transition, ...] = (
    _Transition("validate", S.PENDING, S.VALIDATING),
    _Transition("deploy", S.VALIDATING, S.DEPLOYING),
    _Transition("verify", S.DEPLOYING, S.VERIFYING),
    _Transition("succeed", S.VERIFYING, S.SUCCEEDED),
    _Transition("fail", S.VALIDATING, S.FAILED),
    _Transition("fail", S.DEPLOYING, S.FAILED),
    _Transition("roll_back", S.VERIFYING, S.ROLLING_BACK),
    _Transition("rolled_back", S.ROLLING_BACK, S.ROLLED_BACK),
    _Transition("rollback_failed", S.ROLLING_BACK, S.ROLLBACK_FAILED),
)

# Manual rollbacks get their own record and skip the deploy states.
ROLLBACK_TRANSITIONS: tuple[_Transition, ...] = (
    _Transition("roll_back", S.PENDING, S.ROLLING_BACK),
    _Transition("fail", S.PENDING, S.FAILED),
    _Transition("rolled_back", S.ROLLING_BACK, S.ROLLED_BACK),
    _Transition("rollback_failed", S.ROLLING_BACK, S.ROLLBACK_FAILED),
)


class DeploymentStateMachine:
    """Drives one `DeploymentRecord` through its allowed transitions.

    The record is the single source of truth for the current state; every
    transition is appended to `record.history` and terminal transitions
    stamp `finished_at`. Not thread-safe: a record is owned by one worker.
    """

    def __init__(self, record: DeploymentRecord) -> None:
        self.record = record
        self._transitions = (
            ROLLBACK_TRANSITIONS if record.kind is RecordKind.ROLLBACK else DEPLOYMENT_TRANSITIONS
        )

    @property
    def state(self) -> S:
        return self.record.state

    def trigger(self, trigger: str) -> S:
        for t in self._transitions:
            if t.trigger == trigger and t.source is self.state:
                self.record.state = t.dest
                self.record.history.append(StateTransition(state=t.dest))
                if t.dest.terminal:
                    self.record.finished_at = utcnow()
                logger.info(
                    "deployment.transition",
                    extra={
                        "extra": {
                            "deployment_id": self.record.deployment_id,
                            "environment": self.record.environment,
                            "from": t.source.value,
                            "to": t.dest.value,
                        }
                    },
                )
                return t.dest
        raise InvalidTransition(
            f"No transition for trigger '{trigger}' from state '{self.state.value}'"
        )
