"""Command line entrypoint for DeployGuard."""

from __future__ import annotations

from argparse import ArgumentParser, Namespace
from collections.abc import Callable, Sequence
import json
import logging

from deployguard.config.settings import get_settings
from deployguard.contracts.models import DeploymentRecord
from deployguard.contracts.types import DeploymentState
from deployguard.errors import DeployGuardError
from deployguard.runtime import Runtime, build_runtime, configure_observability


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="deployguard",
        description="Deploy, verify and roll back PaaS environments.",
        epilog="DOKKU_HOST, SSH_KEY and WEBHOOK_URL select the remote host, "
        "SSH key and an optional notification webhook.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level.")
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="Deploy a commit to an environment.")
    deploy.add_argument("environment")
    deploy.add_argument("branch")
    deploy.add_argument("commit")

    rollback = sub.add_parser("rollback", help="Roll an app back to a prior release.")
    rollback.add_argument("app")
    rollback.add_argument("release", nargs="?", help="Release to roll back to (default: previous).")
    rollback.add_argument("--list", action="store_true", help="List available releases and exit.")
    rollback.add_argument("--force", action="store_true", help="Skip the confirmation prompt.")
    rollback.add_argument("--reason", default="manual rollback")

    releases = sub.add_parser("releases", help="List releases for an app.")
    releases.add_argument("app")

    health = sub.add_parser("health", help="Run the health checks for an environment.")
    health.add_argument("environment")
    return parser


def _print_record(record: DeploymentRecord) -> None:
    print(record.summary())


def _deploy(runtime: Runtime, args: Namespace) -> int:
    try:
        record = runtime.orchestrator.start_deployment(args.environment, args.branch, args.commit)
    except DeployGuardError as exc:
        print(f"Error: {exc}")
        if exc.record is not None:
            _print_record(exc.record)
        return 1
    _print_record(record)
    return 0 if record.state is DeploymentState.SUCCEEDED else 1


def _releases(runtime: Runtime, app: str) -> int:
    try:
        releases = runtime.rollback.list_releases(app)
    except DeployGuardError as exc:
        print(f"Error: {exc}")
        return 1
    print(f"Releases for {app}:")
    for release in releases:
        stamp = release.deployed_at.isoformat() if release.deployed_at else "-"
        marker = "active" if release.active else "available"
        print(f"  {release.label}  {stamp}  {marker}")
    return 0


def _rollback(runtime: Runtime, args: Namespace, confirm: Callable[[str], str]) -> int:
    if args.list:
        return _releases(runtime, args.app)
    if not args.force:
        target = args.release or "the previous release"
        answer = confirm(f"Roll back {args.app} to {target}? [y/N] ")
        if answer.strip().lower() not in {"y", "yes"}:
            print("Rollback cancelled.")
            return 1
    try:
        record = runtime.orchestrator.manual_rollback(args.app, args.release, reason=args.reason)
    except DeployGuardError as exc:
        print(f"Error: {exc}")
        return 1
    _print_record(record)
    return 0 if record.state is DeploymentState.ROLLED_BACK else 1


def _health(runtime: Runtime, args: Namespace) -> int:
    try:
        descriptor = runtime.resolver.resolve(args.environment)
    except DeployGuardError as exc:
        print(f"Error: {exc}")
        return 1
    verdict = runtime.verifier.check_all(descriptor)
    print(json.dumps(verdict.model_dump(mode="json"), indent=2))
    return 0 if verdict.passed else 1


def main(
    argv: Sequence[str] | None = None,
    *,
    runtime: Runtime | None = None,
    confirm: Callable[[str], str] = input,
) -> int:
    args = build_parser().parse_args(argv)
    owned = runtime is None
    if runtime is None:
        try:
            settings = get_settings()
            level = getattr(logging, str(args.log_level).upper(), logging.WARNING)
            configure_observability(settings, level)
            runtime = build_runtime(settings)
        except DeployGuardError as exc:
            print(f"Configuration error: {exc}")
            return 1
    try:
        if args.command == "deploy":
            return _deploy(runtime, args)
        if args.command == "rollback":
            return _rollback(runtime, args, confirm)
        if args.command == "releases":
            return _releases(runtime, args.app)
        return _health(runtime, args)
    finally:
        if owned:
            runtime.close()


if __name__ == "__main__":
    raise SystemExit(main())
