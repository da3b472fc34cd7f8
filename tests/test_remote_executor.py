"""SSH transport: argument vectors, quoting, timeouts and typed host operations."""

from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest

from deployguard.errors import ExecutionError
from deployguard.executor import commands
from deployguard.executor.remote import RemoteHost, SSHExecutor

from helpers import FakeExecutor, result


class FakeRunner:
    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "", raise_timeout: bool = False) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.raise_timeout = raise_timeout
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        if self.raise_timeout:
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"], output=b"partial")
        return SimpleNamespace(returncode=self.returncode, stdout=self.stdout, stderr=self.stderr)


def test_run_builds_ssh_argument_vector() -> None:
    runner = FakeRunner(stdout="ok\n")
    executor = SSHExecutor(host="paas.example.com", key_path="/keys/deploy", port=2222, runner=runner)
    outcome = executor.run(("ps:report", "restant-main", "--deployed"), timeout=15)

    argv, kwargs = runner.calls[0]
    assert argv[0] == "ssh"
    assert "-p" in argv and argv[argv.index("-p") + 1] == "2222"
    assert argv[argv.index("-i") + 1] == "/keys/deploy"
    assert argv[-2] == "dokku@paas.example.com"
    assert argv[-1] == "ps:report restant-main --deployed"
    assert kwargs["timeout"] == 15
    assert outcome.ok
    assert outcome.stdout == "ok\n"


@pytest.mark.parametrize("bad", ["app; rm -rf /", "$(whoami)", "a b", "`id`", ""])
def test_run_rejects_shell_metacharacters(bad: str) -> None:
    runner = FakeRunner()
    executor = SSHExecutor(host="paas.example.com", runner=runner)
    with pytest.raises(ValueError):
        executor.run(("apps:exists", bad))
    assert runner.calls == []


def test_timeout_is_reported_not_raised() -> None:
    executor = SSHExecutor(host="paas.example.com", runner=FakeRunner(raise_timeout=True))
    outcome = executor.run(("ps:rebuild", "restant-main"), timeout=5)
    assert outcome.timed_out is True
    assert outcome.exit_code == 124
    assert outcome.stdout == "partial"
    assert not outcome.ok


def test_push_uses_git_with_ssh_command() -> None:
    runner = FakeRunner()
    executor = SSHExecutor(host="paas.example.com", key_path="/keys/deploy", port=2222, runner=runner)
    executor.push("restant-staging", "abc123", timeout=300)

    argv, kwargs = runner.calls[0]
    assert argv == [
        "git",
        "push",
        "--force",
        "ssh://dokku@paas.example.com:2222/restant-staging",
        "abc123:refs/heads/main",
    ]
    assert "-i /keys/deploy" in kwargs["env"]["GIT_SSH_COMMAND"]
    assert "-p" not in kwargs["env"]["GIT_SSH_COMMAND"].split()


def test_push_rejects_option_like_refs() -> None:
    executor = SSHExecutor(host="paas.example.com", runner=FakeRunner())
    with pytest.raises(ValueError):
        executor.push("restant-staging", "--upload-pack=evil")


def test_config_set_defaults_to_no_restart() -> None:
    assert commands.config_set("restant-main", {"APP_DEBUG": "false"}) == (
        "config:set",
        "--no-restart",
        "restant-main",
        "APP_DEBUG=false",
    )
    with pytest.raises(ValueError):
        commands.config_get("restant-main", "bad-key")


def test_remote_host_raises_execution_error_with_result() -> None:
    executor = FakeExecutor()
    executor.responses["domains:add"] = result(exit_code=1, stderr="domain taken")
    host = RemoteHost(executor)
    with pytest.raises(ExecutionError) as excinfo:
        host.domains_add("restant-main", "restant.main.example.com")
    assert excinfo.value.result is not None
    assert "domain taken" in str(excinfo.value)


def test_remote_host_admin_operations() -> None:
    executor = FakeExecutor()
    executor.responses["config:get"] = result(stdout="production\n")
    host = RemoteHost(executor)
    assert host.config_get("restant-main", "APP_ENV") == "production"
    host.enable_tls("restant-main")
    host.tls_report("restant-main")
    assert executor.subcommands() == ["config:get", "letsencrypt:enable", "certs:report"]


def test_rebuild_and_config_set_go_through_the_executor() -> None:
    executor = FakeExecutor()
    host = RemoteHost(executor)
    host.rebuild("restant-main")
    host.config_set("restant-main", {"APP_ENV": "production"}, restart=True)
    assert executor.calls == [
        ("ps:rebuild", "restant-main"),
        ("config:set", "restant-main", "APP_ENV=production"),
    ]


def test_missing_ssh_binary_is_reported_not_raised() -> None:
    def runner(argv, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", argv[0])

    executor = SSHExecutor(host="paas.example.com", runner=runner)
    outcome = executor.run(("apps:exists", "restant-main"), timeout=5)
    assert outcome.exit_code == 127
    assert not outcome.ok
    assert "ssh could not be started" in outcome.stderr

    pushed = executor.push("restant-main", "abc123", timeout=5)
    assert pushed.exit_code == 127
    assert "git could not be started" in pushed.stderr
