"""Argument-vector builders for remote PaaS commands.

Every builder returns a tuple of arguments. Arguments are validated against
a conservative character set so nothing that could be reinterpreted by the
remote shell ever reaches the transport.
"""

from __future__ import annotations

from collections.abc import Iterable
import re

SAFE_ARG = re.compile(r"^[A-Za-z0-9._:/@%+,=-]+$")
CONFIG_KEY = re.compile(r"^[A-Z_][A-Z0-9_]*$")
COMMIT_REF = re.compile(r"^[A-Za-z0-9._/-]{1,255}$")


def validate_args(args: Iterable[str]) -> tuple[str, ...]:
    checked = tuple(args)
    if not checked:
        raise ValueError("Empty command")
    for arg in checked:
        if not SAFE_ARG.match(arg):
            raise ValueError(f"Unsafe command argument: {arg!r}")
    return checked


def validate_ref(ref: str) -> str:
    if not COMMIT_REF.match(ref) or ".." in ref or ref.startswith("-"):
        raise ValueError(f"Invalid git ref: {ref!r}")
    return ref


def probe(app: str) -> tuple[str, ...]:
    return validate_args(("apps:exists", app))


def list_releases(app: str) -> tuple[str, ...]:
    return validate_args(("ps:report", app, "--deployed"))


def stop(app: str) -> tuple[str, ...]:
    return validate_args(("ps:stop", app))


def rebuild(app: str) -> tuple[str, ...]:
    return validate_args(("ps:rebuild", app))


def rollback_to(app: str, release: str) -> tuple[str, ...]:
    return validate_args(("tags:deploy", app, release))


def config_get(app: str, key: str) -> tuple[str, ...]:
    if not CONFIG_KEY.match(key):
        raise ValueError(f"Invalid config key: {key!r}")
    return validate_args(("config:get", app, key))


def config_set(app: str, values: dict[str, str], *, restart: bool = False) -> tuple[str, ...]:
    pairs = []
    for key, value in sorted(values.items()):
        if not CONFIG_KEY.match(key):
            raise ValueError(f"Invalid config key: {key!r}")
        pairs.append(f"{key}={value}")
    flags = () if restart else ("--no-restart",)
    return validate_args(("config:set", *flags, app, *pairs))


def domains_add(app: str, domain: str) -> tuple[str, ...]:
    return validate_args(("domains:add", app, domain))


def certs_enable(app: str) -> tuple[str, ...]:
    return validate_args(("letsencrypt:enable", app))


def certs_report(app: str) -> tuple[str, ...]:
    return validate_args(("certs:report", app))
