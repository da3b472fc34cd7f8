"""Parsing and ordering of the remote host's release listing."""

from __future__ import annotations

from datetime import datetime, timezone

from deployguard.contracts.models import ReleaseReference

ACTIVE_MARKERS = frozenset({"active", "current", "true", "running", "*"})


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_releases(output: str) -> list[ReleaseReference]:
    """Parse `label [timestamp] [status]` lines, most recent first.

    When every line carries a timestamp the list is re-sorted by it rather
    than trusting the host's ordering. When no line is marked active the
    first entry is taken to be the active release.
    """
    releases: list[ReleaseReference] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or line.startswith("=====>") or line.startswith("#"):
            continue
        parts = line.split()
        label = parts[0]
        deployed_at = None
        active = False
        for token in parts[1:]:
            if deployed_at is None and (ts := _parse_timestamp(token)) is not None:
                deployed_at = ts
            elif token.lower() in ACTIVE_MARKERS:
                active = True
        releases.append(ReleaseReference(label=label, deployed_at=deployed_at, active=active))

    if releases and all(r.deployed_at is not None for r in releases):
        releases.sort(key=lambda r: r.deployed_at, reverse=True)  # type: ignore[arg-type, return-value]
    if releases and not any(r.active for r in releases):
        releases[0] = releases[0].model_copy(update={"active": True})
    return releases


def available_releases(releases: list[ReleaseReference]) -> list[ReleaseReference]:
    """Releases a rollback may target: everything except the active one."""
    return [release for release in releases if not release.active]
