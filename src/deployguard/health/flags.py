"""Feature-flag evaluation client with local default fallback."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FeatureFlagClient:
    """Reads flags from a Flagsmith-compatible API.

    `get_flag` never raises: when the service is unreachable or the flag is
    unknown the caller's default is returned.
    """

    api_url: str
    environment_key: str
    client: httpx.Client
    timeout: float = 10.0

    def _url(self, path: str) -> str:
        return self.api_url.rstrip("/") + "/" + path.lstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"X-Environment-Key": self.environment_key}

    def _fetch(self, identity: str | None) -> list[dict[str, Any]]:
        if identity:
            response = self.client.get(
                self._url("identities/"),
                params={"identifier": identity},
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return list(response.json().get("flags", []))
        response = self.client.get(self._url("flags/"), headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()
        return list(response.json())

    def get_flag(self, name: str, default: Any, identity: str | None = None) -> Any:
        try:
            flags = self._fetch(identity)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "flags.fallback",
                extra={"extra": {"flag": name, "error": str(exc), "default": default}},
            )
            return default
        for flag in flags:
            feature = flag.get("feature") or {}
            if feature.get("name") != name:
                continue
            if isinstance(default, bool):
                return bool(flag.get("enabled", default))
            value = flag.get("feature_state_value")
            return default if value is None else value
        return default

    def health(self) -> None:
        """Raise if the flag API cannot serve this environment's flags."""
        response = self.client.get(self._url("flags/"), headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()
