"""Remote command execution against the PaaS host over SSH."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
import logging
import os
import shlex
import subprocess
import time
from typing import Any, Protocol

from deployguard.contracts.models import CommandResult, ReleaseReference
from deployguard.executor import commands
from deployguard.executor.releases import parse_releases
from deployguard.errors import ExecutionError

logger = logging.getLogger(__name__)

Runner = Callable[..., Any]


class RemoteExecutor(Protocol):
    """Transport for deployment actions. Interprets nothing but the exit code."""

    def run(self, args: Sequence[str], *, timeout: float | None = None) -> CommandResult:
        """Run one remote command given as an argument vector."""

    def push(self, app: str, commit: str, *, timeout: float | None = None) -> CommandResult:
        """Push `commit` to the app's deploy ref, triggering a build."""


@dataclass(slots=True)
class SSHExecutor:
    """Runs commands as `ssh user@host <quoted args...>` and pushes with git.

    `runner` defaults to `subprocess.run` and is injectable for tests.
    """

    host: str
    user: str = "dokku"
    key_path: str | None = None
    port: int = 22
    connect_timeout: float = 10.0
    default_timeout: float = 120.0
    deploy_ref: str = "refs/heads/main"
    runner: Runner = field(default=subprocess.run)

    def _ssh_base(self, *, with_port: bool = True) -> list[str]:
        argv = ["ssh", "-o", "BatchMode=yes", "-o", f"ConnectTimeout={int(self.connect_timeout)}"]
        if with_port:
            argv += ["-p", str(self.port)]
        if self.key_path:
            argv += ["-i", os.path.expanduser(self.key_path)]
        return argv

    def _execute(self, argv: list[str], timeout: float, env: dict[str, str] | None = None) -> CommandResult:
        started = time.monotonic()
        try:
            proc = self.runner(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            duration = time.monotonic() - started
            logger.error(
                "remote.command.timeout",
                extra={"extra": {"argv": argv[-4:], "timeout_s": timeout}},
            )
            return CommandResult(
                args=tuple(argv),
                stdout=_text(exc.stdout),
                stderr=_text(exc.stderr) or f"timed out after {timeout:.0f}s",
                exit_code=124,
                duration_s=duration,
                timed_out=True,
            )
        except OSError as exc:
            logger.error(
                "remote.command.unavailable",
                extra={"extra": {"argv": argv[:1], "error": str(exc)}},
            )
            return CommandResult(
                args=tuple(argv),
                stderr=f"{argv[0]} could not be started: {exc}",
                exit_code=127,
                duration_s=time.monotonic() - started,
            )
        result = CommandResult(
            args=tuple(argv),
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            exit_code=proc.returncode,
            duration_s=time.monotonic() - started,
        )
        level = logging.INFO if result.ok else logging.WARNING
        logger.log(
            level,
            "remote.command.finished",
            extra={"extra": {"argv": argv[-4:], "exit_code": result.exit_code}},
        )
        return result

    def run(self, args: Sequence[str], *, timeout: float | None = None) -> CommandResult:
        checked = commands.validate_args(args)
        remote = " ".join(shlex.quote(arg) for arg in checked)
        argv = [*self._ssh_base(), f"{self.user}@{self.host}", remote]
        return self._execute(argv, timeout or self.default_timeout)

    def push(self, app: str, commit: str, *, timeout: float | None = None) -> CommandResult:
        commands.validate_args((app,))
        commands.validate_ref(commit)
        remote_url = f"ssh://{self.user}@{self.host}:{self.port}/{app}"
        argv = ["git", "push", "--force", remote_url, f"{commit}:{self.deploy_ref}"]
        env = dict(os.environ)
        env["GIT_SSH_COMMAND"] = " ".join(shlex.quote(part) for part in self._ssh_base(with_port=False))
        return self._execute(argv, timeout or self.default_timeout, env=env)


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


@dataclass(slots=True)
class RemoteHost:
    """Typed operations over a `RemoteExecutor`.

    Methods that return data raise `ExecutionError` on a non-zero exit; the
    raw `CommandResult` is attached to the error.
    """

    executor: RemoteExecutor
    timeout: float = 120.0

    def _checked(self, args: Sequence[str], timeout: float | None = None) -> CommandResult:
        result = self.executor.run(args, timeout=timeout or self.timeout)
        if not result.ok:
            raise ExecutionError(
                f"`{' '.join(args)}` failed with exit code {result.exit_code}: "
                f"{result.stderr.strip() or result.stdout.strip()}",
                result,
            )
        return result

    def probe(self, app: str, timeout: float | None = None) -> CommandResult:
        return self._checked(commands.probe(app), timeout)

    def list_releases(self, app: str) -> list[ReleaseReference]:
        return parse_releases(self._checked(commands.list_releases(app)).stdout)

    def stop(self, app: str) -> CommandResult:
        return self.executor.run(commands.stop(app), timeout=self.timeout)

    def rollback_to(self, app: str, release: str) -> CommandResult:
        return self.executor.run(commands.rollback_to(app, release), timeout=self.timeout)

    def rebuild(self, app: str) -> CommandResult:
        return self._checked(commands.rebuild(app))

    def config_get(self, app: str, key: str) -> str:
        return self._checked(commands.config_get(app, key)).stdout.strip()

    def config_set(self, app: str, values: dict[str, str], *, restart: bool = False) -> CommandResult:
        return self._checked(commands.config_set(app, values, restart=restart))

    def domains_add(self, app: str, domain: str) -> CommandResult:
        return self._checked(commands.domains_add(app, domain))

    def enable_tls(self, app: str) -> CommandResult:
        return self._checked(commands.certs_enable(app))

    def tls_report(self, app: str) -> str:
        return self._checked(commands.certs_report(app)).stdout
