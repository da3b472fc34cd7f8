"""Layered configuration sources: process env, .env file, AWS Secrets Manager."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import hashlib
import json
import os
from pathlib import Path
from typing import Any, Protocol

try:
    import boto3
except ImportError:  # pragma: no cover - optional dependency for local usage
    boto3 = None


class ConfigSource(Protocol):
    """A backing store that may or may not know a key."""

    name: str

    def get(self, key: str) -> str | None: ...


@dataclass(slots=True)
class EnvConfigSource:
    """Reads process environment variables, optionally namespaced by a prefix."""

    prefix: str | None = None
    name: str = "env"

    def get(self, key: str) -> str | None:
        env_key = f"{self.prefix}{key}" if self.prefix else key
        return os.getenv(env_key)


@dataclass(slots=True)
class DotEnvConfigSource:
    """Minimal `.env` reader: KEY=VALUE lines, `export` prefix and quotes allowed."""

    path: Path = Path(".env")
    encoding: str = "utf-8"
    name: str = "dotenv"
    _cache: dict[str, str] = field(default_factory=dict, init=False)
    _loaded: bool = field(default=False, init=False)

    def load(self) -> dict[str, str]:
        if self._loaded:
            return self._cache
        try:
            for raw_line in self.path.read_text(encoding=self.encoding).splitlines():
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                if line.startswith("export "):
                    line = line[len("export ") :].lstrip()
                key, value = line.split("=", 1)
                self._cache[key.strip()] = self._strip_quotes(value.strip())
        except FileNotFoundError:
            pass
        finally:
            self._loaded = True
        return self._cache

    @staticmethod
    def _strip_quotes(value: str) -> str:
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            return value[1:-1]
        return value

    def get(self, key: str) -> str | None:
        return self.load().get(key)


@dataclass(slots=True)
class SecretsManagerConfigSource:
    """Reads deployment secrets from one AWS Secrets Manager JSON secret."""

    secret_id: str
    region_name: str | None = None
    profile_name: str | None = None
    name: str = "secretsmanager"
    _cache: dict[str, str] = field(default_factory=dict, init=False)
    _loaded: bool = field(default=False, init=False)

    def _client(self) -> Any:
        if boto3 is None:
            raise RuntimeError("boto3 is required for SecretsManagerConfigSource")
        session = (
            boto3.session.Session(profile_name=self.profile_name)
            if self.profile_name
            else boto3.session.Session()
        )
        return session.client("secretsmanager", region_name=self.region_name)

    def _load(self) -> None:
        if self._loaded:
            return
        try:
            resp = self._client().get_secret_value(SecretId=self.secret_id)
            secret_string = resp.get("SecretString")
            if not secret_string and resp.get("SecretBinary"):
                secret_string = base64.b64decode(resp["SecretBinary"]).decode("utf-8")
            if not secret_string:
                return
            try:
                parsed = json.loads(secret_string)
            except json.JSONDecodeError:
                self._cache["SECRET_STRING"] = secret_string
                return
            if isinstance(parsed, dict):
                self._cache.update({k: str(v) for k, v in parsed.items()})
            else:
                self._cache["SECRET_STRING"] = str(parsed)
        finally:
            self._loaded = True

    def get(self, key: str) -> str | None:
        self._load()
        return self._cache.get(key)


@dataclass(slots=True)
class ConfigAdapter:
    """First source that knows a key wins (env → .env → secrets)."""

    sources: tuple[ConfigSource, ...]

    def get(self, key: str, default: str | None = None) -> str | None:
        for source in self.sources:
            value = source.get(key)
            if value is not None:
                return value
        return default

    def origin(self, key: str) -> str | None:
        """Name of the source that supplies `key`, for diagnostics."""
        for source in self.sources:
            if source.get(key) is not None:
                return source.name
        return None


def mask_secret(value: str | None) -> str:
    """Render a secret for logs without revealing it."""
    if not value:
        return "[EMPTY]"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return f"[MASKED:{digest[:8]}]"
