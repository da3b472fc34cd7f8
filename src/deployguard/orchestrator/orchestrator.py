"""Deployment orchestrator: validate, deploy, verify and roll back."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
import logging
from threading import Event, Lock
import time
from typing import Any

from deployguard.config.config import get_config_value
from deployguard.config.environments import EnvironmentResolver, missing_secrets
from deployguard.config.settings import RemoteSettings, VerificationSettings
from deployguard.contracts import events
from deployguard.contracts.events import NotificationEvent
from deployguard.contracts.models import (
    DeploymentRecord,
    EnvironmentDescriptor,
    HealthVerdict,
    StepOutcome,
    utcnow,
)
from deployguard.contracts.types import DeploymentState, RecordKind, StepStatus
from deployguard.errors import (
    ConfigurationError,
    DeployGuardError,
    DeploymentCancelled,
    DeploymentInProgress,
    DeploymentTimeout,
    ExecutionError,
    RollbackError,
    VerificationFailure,
)
from deployguard.executor import commands
from deployguard.executor.remote import RemoteExecutor, RemoteHost
from deployguard.health.verifier import HealthVerifier
from deployguard.notifications.dispatcher import NotificationDispatcher
from deployguard.observability.metrics import DEPLOYMENTS
from deployguard.observability.telemetry import annotate, get_tracer
from deployguard.orchestrator.lease import LeaseRegistry
from deployguard.orchestrator.rollback import RollbackController
from deployguard.orchestrator.state import DeploymentStateMachine
from deployguard.orchestrator.store import DeploymentStore, InMemoryDeploymentStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Attempt:
    machine: DeploymentStateMachine
    descriptor: EnvironmentDescriptor
    deadline: float
    cancelled: Event = field(default_factory=Event)

    @property
    def record(self) -> DeploymentRecord:
        return self.machine.record


class Orchestrator:
    """Owns deployment records from PENDING to a terminal state.

    Validation-stage failures are raised to the caller with the FAILED
    record attached as `exc.record`. Everything after validation is
    reported through the returned record's terminal state. The
    per-environment lease is held for the whole attempt, including any
    rollback, and is always released.
    """

    def __init__(
        self,
        resolver: EnvironmentResolver,
        host: RemoteHost,
        executor: RemoteExecutor,
        verifier: HealthVerifier,
        rollback: RollbackController,
        dispatcher: NotificationDispatcher,
        *,
        store: DeploymentStore | None = None,
        leases: LeaseRegistry | None = None,
        verification: VerificationSettings | None = None,
        remote: RemoteSettings | None = None,
        secret_lookup: Callable[[str], str | None] = get_config_value,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._resolver = resolver
        self._host = host
        self._executor = executor
        self._verifier = verifier
        self._rollback = rollback
        self._dispatcher = dispatcher
        self._store = store if store is not None else InMemoryDeploymentStore()
        self._leases = leases or LeaseRegistry()
        self._verification = verification or VerificationSettings()
        self._remote = remote or RemoteSettings()
        self._secret_lookup = secret_lookup
        self._sleep = sleep
        self._clock = clock
        self._active: dict[str, _Attempt] = {}
        self._lock = Lock()

    @property
    def store(self) -> DeploymentStore:
        return self._store

    @property
    def leases(self) -> LeaseRegistry:
        return self._leases

    # ----- public operations -------------------------------------------------

    def start_deployment(self, environment: str, branch: str, commit: str) -> DeploymentRecord:
        record = DeploymentRecord(environment=environment, branch=branch, commit=commit)
        machine = DeploymentStateMachine(record)
        machine.trigger("validate")
        logger.info(
            "deployment.started",
            extra={
                "extra": {
                    "deployment_id": record.deployment_id,
                    "environment": environment,
                    "branch": branch,
                    "commit": commit,
                }
            },
        )
        tracer = get_tracer("deployguard.orchestrator")
        with tracer.start_as_current_span("deployment") as span:
            annotate(span, record)
            try:
                self._attempt(machine, tracer)
            finally:
                annotate(span, record)
        return record

    def cancel(self, deployment_id: str) -> bool:
        """Request cancellation; honoured at the next step boundary."""
        with self._lock:
            attempt = self._active.get(deployment_id)
        if attempt is None:
            return False
        attempt.cancelled.set()
        logger.warning("deployment.cancel.requested", extra={"extra": {"deployment_id": deployment_id}})
        return True

    def in_progress(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def manual_rollback(
        self, app: str, target_release: str | None = None, *, reason: str = "manual rollback"
    ) -> DeploymentRecord:
        """Roll `app` back outside a deployment, under the environment's lease."""
        descriptor = self._resolver.find_by_app(app)
        record = DeploymentRecord(
            kind=RecordKind.ROLLBACK,
            environment=descriptor.name if descriptor else app,
            branch=descriptor.branch if descriptor else "",
            commit="",
        )
        machine = DeploymentStateMachine(record)
        tracer = get_tracer("deployguard.orchestrator")
        with tracer.start_as_current_span("manual_rollback") as span:
            try:
                with self._leases.hold(record.environment, record.deployment_id):
                    machine.trigger("roll_back")
                    self._execute_rollback(machine, descriptor, app, target_release, reason)
            except DeploymentInProgress as exc:
                raise self._reject(machine, exc)
            finally:
                annotate(span, record)
        return record

    # ----- steps -------------------------------------------------------------

    def _attempt(self, machine: DeploymentStateMachine, tracer: Any) -> None:
        record = machine.record
        try:
            descriptor = self._resolve(record.environment, record.branch, record.commit)
        except ConfigurationError as exc:
            raise self._reject(machine, exc)

        attempt = _Attempt(
            machine=machine,
            descriptor=descriptor,
            deadline=self._clock() + self._verification.max_deployment_s,
        )
        try:
            with self._leases.hold(descriptor.name, record.deployment_id):
                with self._lock:
                    self._active[record.deployment_id] = attempt
                try:
                    self._run(attempt, tracer)
                finally:
                    with self._lock:
                        self._active.pop(record.deployment_id, None)
        except DeploymentInProgress as exc:
            raise self._reject(machine, exc)

    def _resolve(self, environment: str, branch: str, commit: str) -> EnvironmentDescriptor:
        descriptor = self._resolver.resolve(environment)
        if branch != descriptor.branch:
            raise ConfigurationError(
                f"Branch {branch!r} does not match {environment} branch {descriptor.branch!r}"
            )
        try:
            commands.validate_ref(commit)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        return descriptor

    def _run(self, attempt: _Attempt, tracer: Any) -> None:
        record, machine, descriptor = attempt.record, attempt.machine, attempt.descriptor

        with tracer.start_as_current_span("deployment.validate"):
            try:
                self._validate(attempt)
            except (ConfigurationError, ExecutionError, DeploymentTimeout, DeploymentCancelled) as exc:
                raise self._reject(machine, exc)
            except Exception as exc:
                logger.exception(
                    "deployment.validate.crashed",
                    extra={"extra": {"deployment_id": record.deployment_id}},
                )
                raise self._reject(machine, ExecutionError(f"{type(exc).__name__}: {exc}")) from exc

        machine.trigger("deploy")
        self._notify(record, events.started(descriptor.name, record.branch, record.commit))
        with tracer.start_as_current_span("deployment.deploy"):
            try:
                self._deploy(attempt)
            except (ExecutionError, DeploymentTimeout, DeploymentCancelled) as exc:
                self._fail(machine, exc, step=record.failed_step or "deploy")
                return
            except Exception as exc:
                logger.exception(
                    "deployment.deploy.crashed",
                    extra={"extra": {"deployment_id": record.deployment_id}},
                )
                self._fail(machine, exc, step=record.failed_step or "deploy")
                return

        machine.trigger("verify")
        with tracer.start_as_current_span("deployment.verify"):
            verdict, failure = self._verify(attempt)
        if failure is None:
            machine.trigger("succeed")
            self._notify(
                record,
                events.success(
                    descriptor.name,
                    record.branch,
                    record.commit,
                    url=descriptor.url,
                    duration_s=round(record.elapsed_s, 1),
                    steps=[f"{s.name}: {s.status.value}" for s in record.steps],
                    verdict=verdict.status.value if verdict else None,
                ),
            )
            self._finish(record)
            return

        record.error = failure
        record.error_type = VerificationFailure.__name__
        record.failed_step = "verify"
        machine.trigger("roll_back")
        with tracer.start_as_current_span("deployment.rollback"):
            self._execute_rollback(machine, descriptor, descriptor.app, None, failure)

    def _validate(self, attempt: _Attempt) -> None:
        descriptor = attempt.descriptor
        with self._step(attempt.record, "validate"):
            missing = missing_secrets(descriptor, self._secret_lookup)
            if missing:
                raise ConfigurationError(
                    f"Missing required secrets for {descriptor.name}: {', '.join(missing)}"
                )
            self._checkpoint(attempt)
            self._host.probe(
                descriptor.app,
                timeout=self._bounded(attempt, self._remote.connect_timeout_s),
            )

    def _deploy(self, attempt: _Attempt) -> None:
        record, descriptor = attempt.record, attempt.descriptor
        with self._step(record, "push"):
            self._checkpoint(attempt)
            result = self._executor.push(
                descriptor.app,
                record.commit,
                timeout=self._bounded(attempt, self._remote.deploy_timeout_s),
            )
            self._check_result(attempt, "push", result)
        for sub_step in descriptor.post_deploy:
            with self._step(record, sub_step.name):
                self._checkpoint(attempt)
                result = self._executor.run(
                    sub_step.command,
                    timeout=self._bounded(attempt, self._remote.command_timeout_s),
                )
                self._check_result(attempt, sub_step.name, result)

    def _verify(self, attempt: _Attempt) -> tuple[HealthVerdict | None, str | None]:
        """Bounded verification loop. Returns the last verdict and a failure reason."""
        record, descriptor = attempt.record, attempt.descriptor
        settings = self._verification
        verdict: HealthVerdict | None = None
        started = utcnow()
        failure: str | None = None
        for number in range(1, settings.attempts + 1):
            if attempt.cancelled.is_set():
                failure = "deployment cancelled during verification"
                break
            if self._clock() >= attempt.deadline:
                failure = f"maximum deployment time of {settings.max_deployment_s:.0f}s exceeded"
                break
            verdict = self._verifier.check_all(descriptor)
            record.verdict = verdict
            logger.info(
                "deployment.verify.attempt",
                extra={
                    "extra": {
                        "deployment_id": record.deployment_id,
                        "attempt": number,
                        "status": verdict.status.value,
                    }
                },
            )
            if verdict.passed:
                failure = None
                break
            failure = verdict.failure_detail()
            if number == settings.attempts:
                break
            delay = settings.delay_s * settings.backoff ** (number - 1)
            if self._clock() + delay >= attempt.deadline:
                failure = f"{failure}; maximum deployment time would be exceeded"
                break
            self._sleep(delay)
        record.steps.append(
            StepOutcome(
                name="verify",
                status=StepStatus.SUCCEEDED if failure is None else StepStatus.FAILED,
                started_at=started,
                finished_at=utcnow(),
                detail=(verdict.status.value if verdict else "") if failure is None else failure,
            )
        )
        return verdict, failure

    def _execute_rollback(
        self,
        machine: DeploymentStateMachine,
        descriptor: EnvironmentDescriptor | None,
        app: str,
        target_release: str | None,
        reason: str,
    ) -> None:
        record = machine.record
        audit = None
        audit_machine = None
        if record.kind is RecordKind.DEPLOYMENT:
            audit = DeploymentRecord(
                kind=RecordKind.ROLLBACK,
                environment=record.environment,
                branch=record.branch,
                commit=record.commit,
                source_deployment_id=record.deployment_id,
            )
            audit_machine = DeploymentStateMachine(audit)
            audit_machine.trigger("roll_back")

        started = utcnow()
        machines = [m for m in (machine, audit_machine) if m is not None]
        try:
            outcome = self._rollback.rollback(
                app, target_release, reason=reason, environment=descriptor
            )
        except (RollbackError, ExecutionError) as exc:
            logger.critical(
                "deployment.rollback.failed",
                extra={"extra": {"deployment_id": record.deployment_id, "app": app, "error": str(exc)}},
            )
            event = self._rollback_failed(machines, exc, started, app, reason)
        except Exception as exc:
            logger.critical(
                "deployment.rollback.crashed",
                exc_info=True,
                extra={"extra": {"deployment_id": record.deployment_id, "app": app, "error": str(exc)}},
            )
            event = self._rollback_failed(machines, exc, started, app, reason)
        else:
            for m in machines:
                m.record.rollback_release = outcome.release.label
                m.record.verdict = outcome.verdict or m.record.verdict
                m.record.steps.append(
                    StepOutcome(
                        name="rollback",
                        status=StepStatus.SUCCEEDED,
                        started_at=started,
                        finished_at=utcnow(),
                        detail=f"rolled back to {outcome.release.label}",
                    )
                )
                m.trigger("rolled_back")
            event = events.rollback(
                record.environment,
                reason,
                branch=record.branch or None,
                commit=record.commit or None,
                app=app,
                release=outcome.release.label,
                post_rollback_status=outcome.verdict.status.value if outcome.verdict else None,
            )

        self._notify(record, event)
        if audit is not None:
            audit.notified_channels = list(record.notified_channels)
            self._finish(audit)
        self._finish(record)

    def _rollback_failed(
        self,
        machines: list[DeploymentStateMachine],
        exc: Exception,
        started: datetime,
        app: str,
        reason: str,
    ) -> NotificationEvent:
        detail = f"{type(exc).__name__}: {exc}"
        for m in machines:
            m.record.steps.append(
                StepOutcome(
                    name="rollback",
                    status=StepStatus.FAILED,
                    started_at=started,
                    finished_at=utcnow(),
                    detail=detail,
                )
            )
            m.record.error = (
                f"{m.record.error}; rollback failed: {exc}" if m.record.error else str(exc)
            )
            m.record.error_type = type(exc).__name__
            m.record.failed_step = "rollback"
            m.trigger("rollback_failed")
        record = machines[0].record
        return events.rollback_failed(
            record.environment,
            str(exc),
            branch=record.branch or None,
            commit=record.commit or None,
            app=app,
            reason=reason,
        )

    # ----- helpers -----------------------------------------------------------

    def _bounded(self, attempt: _Attempt, timeout: float) -> float:
        remaining = attempt.deadline - self._clock()
        if remaining <= 0:
            raise DeploymentTimeout(
                f"maximum deployment time of {self._verification.max_deployment_s:.0f}s exceeded"
            )
        return min(timeout, remaining)

    def _checkpoint(self, attempt: _Attempt) -> None:
        if attempt.cancelled.is_set():
            raise DeploymentCancelled(f"Deployment {attempt.record.deployment_id} cancelled")
        self._bounded(attempt, 0.0)

    def _check_result(self, attempt: _Attempt, step: str, result: Any) -> None:
        if result.ok:
            return
        if result.timed_out and self._clock() >= attempt.deadline:
            raise DeploymentTimeout(
                f"{step} was still running when the maximum deployment time was reached"
            )
        raise ExecutionError(
            f"{step} failed with exit code {result.exit_code}: "
            f"{result.stderr.strip() or result.stdout.strip()}",
            result,
        )

    def _step(self, record: DeploymentRecord, name: str) -> _StepScope:
        return _StepScope(record, name)

    def _notify(self, record: DeploymentRecord, event: NotificationEvent) -> None:
        event = event.model_copy(update={"deployment_id": record.deployment_id})
        for channel in self._dispatcher.dispatch(event):
            if channel not in record.notified_channels:
                record.notified_channels.append(channel)

    def _fail(self, machine: DeploymentStateMachine, exc: Exception, *, step: str) -> None:
        record = machine.record
        record.error = str(exc)
        record.error_type = type(exc).__name__
        record.failed_step = step
        machine.trigger("fail")
        self._notify(
            record,
            events.failure(record.environment, record.branch, record.commit, str(exc), step=step),
        )
        self._finish(record)

    def _reject(self, machine: DeploymentStateMachine, exc: DeployGuardError) -> DeployGuardError:
        """Fail the record at validation and hand the error back for raising."""
        self._fail(machine, exc, step=machine.record.failed_step or "validate")
        exc.record = machine.record
        return exc

    def _finish(self, record: DeploymentRecord) -> None:
        DEPLOYMENTS.labels(environment=record.environment, state=record.state.value).inc()
        self._store.save(record)
        ok = record.state in (DeploymentState.SUCCEEDED, DeploymentState.ROLLED_BACK)
        level = logging.INFO if ok else logging.ERROR
        logger.log(
            level,
            "deployment.finished",
            extra={
                "extra": {
                    "deployment_id": record.deployment_id,
                    "kind": record.kind.value,
                    "environment": record.environment,
                    "state": record.state.value,
                    "elapsed_s": round(record.elapsed_s, 2),
                    "failed_step": record.failed_step,
                    "notified": record.notified_channels,
                }
            },
        )


class _StepScope:
    """Appends a StepOutcome for the wrapped block, marking the failing step."""

    def __init__(self, record: DeploymentRecord, name: str) -> None:
        self._record = record
        self._name = name
        self._started = utcnow()

    def __enter__(self) -> _StepScope:
        return self

    def __exit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> None:
        failed = exc is not None
        self._record.steps.append(
            StepOutcome(
                name=self._name,
                status=StepStatus.FAILED if failed else StepStatus.SUCCEEDED,
                started_at=self._started,
                finished_at=utcnow(),
                detail=str(exc) if failed else "",
            )
        )
        if failed:
            self._record.failed_step = self._name
