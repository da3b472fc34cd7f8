"""Small fakes shared by the orchestration tests."""

from __future__ import annotations

from collections.abc import Sequence

from deployguard.config.environments import EnvironmentConfig, EnvironmentResolver
from deployguard.config.settings import DEFAULT_ENVIRONMENTS_FILE
from deployguard.contracts.events import NotificationEvent
from deployguard.contracts.models import (
    CheckResult,
    CommandResult,
    EnvironmentDescriptor,
    HealthVerdict,
)
from deployguard.contracts.types import HealthStatus

RELEASES_OUTPUT = """\
=====> restant-main deployed releases
v42 2024-05-03T10:00:00Z active
v41 2024-05-02T10:00:00Z
v40 2024-05-01T10:00:00Z
"""


def result(args: Sequence[str] = (), exit_code: int = 0, stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(args=tuple(args), exit_code=exit_code, stdout=stdout, stderr=stderr)


def resolver() -> EnvironmentResolver:
    return EnvironmentResolver(EnvironmentConfig.load(DEFAULT_ENVIRONMENTS_FILE))


class FakeExecutor:
    """Records every call; answers by subcommand (first argument)."""

    def __init__(self, releases: str = RELEASES_OUTPUT) -> None:
        self.responses: dict[str, CommandResult] = {"ps:report": result(stdout=releases)}
        self.push_result = result(("git", "push"))
        self.calls: list[tuple[str, ...]] = []
        self.pushes: list[tuple[str, str]] = []
        self.timeouts: list[float | None] = []

    def run(self, args: Sequence[str], *, timeout: float | None = None) -> CommandResult:
        self.calls.append(tuple(args))
        self.timeouts.append(timeout)
        canned = self.responses.get(args[0])
        if canned is None:
            return result(args)
        return canned.model_copy(update={"args": tuple(args)})

    def push(self, app: str, commit: str, *, timeout: float | None = None) -> CommandResult:
        self.pushes.append((app, commit))
        self.timeouts.append(timeout)
        return self.push_result

    def subcommands(self) -> list[str]:
        return [call[0] for call in self.calls]


def verdict(environment: str, status: HealthStatus, failing: str = "database") -> HealthVerdict:
    checks = {
        "database": CheckResult(name="database", status=HealthStatus.HEALTHY, critical=True),
        "cache": CheckResult(name="cache", status=HealthStatus.HEALTHY, critical=True),
    }
    if status is not HealthStatus.HEALTHY:
        critical = status is HealthStatus.UNHEALTHY
        checks[failing] = CheckResult(
            name=failing,
            status=HealthStatus.UNHEALTHY,
            message="connection refused",
            critical=critical,
            reason="error",
        )
    return HealthVerdict(environment=environment, status=status, checks=checks)


class ScriptedVerifier:
    """Returns the scripted verdicts in order, repeating the last one."""

    def __init__(self, *statuses: HealthStatus) -> None:
        self.statuses = list(statuses) or [HealthStatus.HEALTHY]
        self.calls: list[str] = []

    def check_all(self, environment: EnvironmentDescriptor) -> HealthVerdict:
        index = min(len(self.calls), len(self.statuses) - 1)
        self.calls.append(environment.name)
        return verdict(environment.name, self.statuses[index])


class RecordingChannel:
    def __init__(self, name: str = "recorder", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.events: list[NotificationEvent] = []

    def send(self, event: NotificationEvent) -> None:
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        self.events.append(event)


def valid_certificate(host: str, port: int, timeout: float) -> dict[str, str]:
    return {"subject": host, "notAfter": "Jan  1 00:00:00 2099 GMT"}
