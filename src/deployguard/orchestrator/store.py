"""Audit persistence for terminal deployment records.

Records are append-only from the orchestrator's point of view: a record is
saved once terminal and never deleted by the running process.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Protocol

from pydantic import ValidationError

from deployguard.contracts.models import DeploymentRecord

logger = logging.getLogger(__name__)


class DeploymentStore(Protocol):
    def save(self, record: DeploymentRecord) -> None:
        """Persist `record` keyed by its deployment id."""

    def load(self, deployment_id: str) -> DeploymentRecord | None:
        """Return the stored record, or None if not found."""

    def list_records(self, limit: int = 50) -> list[DeploymentRecord]:
        """Return up to `limit` records, most recent first."""


@dataclass
class InMemoryDeploymentStore:
    """Non-durable store for tests and one-shot CLI runs."""

    _db: dict[str, DeploymentRecord] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def save(self, record: DeploymentRecord) -> None:
        with self._lock:
            self._db[record.deployment_id] = record.model_copy(deep=True)

    def load(self, deployment_id: str) -> DeploymentRecord | None:
        with self._lock:
            return self._db.get(deployment_id)

    def list_records(self, limit: int = 50) -> list[DeploymentRecord]:
        with self._lock:
            records = list(self._db.values())
        records.sort(key=lambda r: r.started_at, reverse=True)
        return records[:limit]


@dataclass
class JsonFileDeploymentStore:
    """Persist records as `<root>/<deployment_id>.json`, replaced atomically."""

    root: Path

    def __post_init__(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, deployment_id: str) -> Path:
        return self.root / f"{deployment_id}.json"

    def save(self, record: DeploymentRecord) -> None:
        path = self._path_for(record.deployment_id)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            f.write(record.model_dump_json(indent=2))
        tmp.replace(path)

    def load(self, deployment_id: str) -> DeploymentRecord | None:
        path = self._path_for(deployment_id)
        if not path.exists():
            return None
        return DeploymentRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def list_records(self, limit: int = 50) -> list[DeploymentRecord]:
        records: list[DeploymentRecord] = []
        for p in self.root.glob("*.json"):
            try:
                records.append(DeploymentRecord.model_validate_json(p.read_text(encoding="utf-8")))
            except (ValidationError, json.JSONDecodeError):
                logger.warning("store.record.unreadable", extra={"extra": {"path": str(p)}})
                continue
        records.sort(key=lambda r: r.started_at, reverse=True)
        return records[:limit]
