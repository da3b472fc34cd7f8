from __future__ import annotations

import httpx

from deployguard import cli
from deployguard.config.settings import DeploySettings
from deployguard.orchestrator.store import InMemoryDeploymentStore
from deployguard.runtime import Runtime, build_runtime

from helpers import FakeExecutor, result, valid_certificate


def _runtime(executor: FakeExecutor | None = None) -> Runtime:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    return build_runtime(
        DeploySettings(),
        executor=executor or FakeExecutor(),
        client=client,
        store=InMemoryDeploymentStore(),
        cert_fetcher=valid_certificate,
    )


def test_deploy_success_exits_zero(capsys) -> None:
    code = cli.main(["deploy", "search-v2", "feature/search-v2", "abc123"], runtime=_runtime())
    assert code == 0
    assert "state: SUCCEEDED" in capsys.readouterr().out


def test_deploy_validation_error_exits_one(capsys) -> None:
    code = cli.main(["deploy", "search-v2", "main", "abc123"], runtime=_runtime())
    out = capsys.readouterr().out
    assert code == 1
    assert "does not match" in out
    assert "state: FAILED" in out


def test_rollback_list(capsys) -> None:
    code = cli.main(["rollback", "restant-main", "--list"], runtime=_runtime())
    out = capsys.readouterr().out
    assert code == 0
    assert "v42" in out and "active" in out
    assert "v41" in out and "available" in out


def test_rollback_requires_confirmation() -> None:
    executor = FakeExecutor()
    code = cli.main(["rollback", "restant-main"], runtime=_runtime(executor), confirm=lambda prompt: "n")
    assert code == 1
    assert "tags:deploy" not in executor.subcommands()


def test_rollback_confirmed_interactively() -> None:
    executor = FakeExecutor()
    prompts: list[str] = []

    def confirm(prompt: str) -> str:
        prompts.append(prompt)
        return "y"

    code = cli.main(["rollback", "restant-main", "v40"], runtime=_runtime(executor), confirm=confirm)
    assert code == 0
    assert prompts == ["Roll back restant-main to v40? [y/N] "]
    assert ("tags:deploy", "restant-main", "v40") in executor.calls


def test_rollback_force_to_active_release_fails(capsys) -> None:
    def never(prompt: str) -> str:
        raise AssertionError("prompted despite --force")

    code = cli.main(["rollback", "restant-main", "v42", "--force"], runtime=_runtime(), confirm=never)
    assert code == 1
    assert "ROLLBACK_FAILED" in capsys.readouterr().out


def test_rollback_command_failure_exits_one() -> None:
    executor = FakeExecutor()
    executor.responses["tags:deploy"] = result(exit_code=1, stderr="boom")
    code = cli.main(["rollback", "restant-main", "--force"], runtime=_runtime(executor))
    assert code == 1


def test_health_command(capsys) -> None:
    code = cli.main(["health", "search-v2"], runtime=_runtime())
    assert code == 0
    assert '"status": "healthy"' in capsys.readouterr().out
    assert cli.main(["health", "NOPE!"], runtime=_runtime()) == 1
