"""Release selection and rollback execution."""

from __future__ import annotations

import logging
from typing import Protocol

from deployguard.config.environments import EnvironmentResolver
from deployguard.contracts.models import (
    EnvironmentDescriptor,
    HealthVerdict,
    ReleaseReference,
    RollbackOutcome,
)
from deployguard.errors import NoPriorRelease, ReleaseNotFound, RollbackCommandFailed
from deployguard.executor import commands
from deployguard.executor.releases import available_releases
from deployguard.executor.remote import RemoteHost
from deployguard.observability.telemetry import ATTRIBUTE_PREFIX, get_tracer

logger = logging.getLogger(__name__)


class Verifier(Protocol):
    def check_all(self, environment: EnvironmentDescriptor) -> HealthVerdict: ...


def select_release(
    releases: list[ReleaseReference], target: str | None = None
) -> ReleaseReference:
    """Pick the rollback target from a freshly queried release list.

    Without a target, the most recent release that is not active. With a
    target, it must be one of the non-active releases.
    """
    candidates = available_releases(releases)
    if target is not None:
        for release in candidates:
            if release.label == target:
                return release
        raise ReleaseNotFound(f"Release {target!r} is not among the available releases")
    if len(releases) < 2 or not candidates:
        raise NoPriorRelease("No prior release available to roll back to")
    return candidates[0]


class RollbackController:
    """Rolls an app back to a prior release and re-verifies health once.

    The post-rollback verdict is informational: an unhealthy verdict is
    attached to the outcome but never triggers a second rollback.
    """

    def __init__(
        self,
        host: RemoteHost,
        verifier: Verifier,
        resolver: EnvironmentResolver,
    ) -> None:
        self._host = host
        self._verifier = verifier
        self._resolver = resolver

    def list_releases(self, app: str) -> list[ReleaseReference]:
        return self._host.list_releases(app)

    def rollback(
        self,
        app: str,
        target_release: str | None = None,
        *,
        reason: str = "manual",
        environment: EnvironmentDescriptor | None = None,
    ) -> RollbackOutcome:
        tracer = get_tracer("deployguard.rollback")
        with tracer.start_as_current_span("rollback") as span:
            span.set_attribute(f"{ATTRIBUTE_PREFIX}app", app)
            try:
                releases = self._host.list_releases(app)
            except ValueError as exc:
                raise RollbackCommandFailed(f"Cannot list releases for {app}: {exc}") from exc
            release = select_release(releases, target_release)
            span.set_attribute(f"{ATTRIBUTE_PREFIX}release", release.label)
            logger.warning(
                "rollback.started",
                extra={"extra": {"app": app, "release": release.label, "reason": reason}},
            )

            try:
                commands.rollback_to(app, release.label)
            except ValueError as exc:
                raise ReleaseNotFound(
                    f"Release {release.label!r} cannot be deployed for {app}: {exc}"
                ) from exc

            stopped = self._host.stop(app)
            if not stopped.ok:
                logger.warning(
                    "rollback.stop.failed",
                    extra={"extra": {"app": app, "exit_code": stopped.exit_code}},
                )

            result = self._host.rollback_to(app, release.label)
            if not result.ok:
                raise RollbackCommandFailed(
                    f"Rollback of {app} to {release.label} failed with exit code "
                    f"{result.exit_code}: {result.stderr.strip() or result.stdout.strip()}",
                    result,
                )

            descriptor = environment or self._resolver.find_by_app(app)
            verdict = self._verifier.check_all(descriptor) if descriptor is not None else None
            if verdict is not None and not verdict.passed:
                logger.error(
                    "rollback.still_unhealthy",
                    extra={"extra": {"app": app, "detail": verdict.failure_detail()}},
                )
            logger.info(
                "rollback.completed",
                extra={
                    "extra": {
                        "app": app,
                        "release": release.label,
                        "verdict": verdict.status.value if verdict else None,
                    }
                },
            )
            return RollbackOutcome(
                app=app,
                release=release,
                verdict=verdict,
                command=result,
                details={"reason": reason, "stop_ok": stopped.ok},
            )
