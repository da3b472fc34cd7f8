"""Structured logging and batched log shipping."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from threading import Lock
import time
from typing import Any

import httpx


class JsonFormatter(logging.Formatter):
    """Render log records as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(record.extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LokiLogHandler(logging.Handler):
    """Ship log lines to a Grafana Loki push endpoint in batches.

    Records are buffered and pushed when `batch_size` is reached or on
    `flush()`/`close()`. Push failures go through `handleError` and the
    buffered batch is dropped.
    """

    def __init__(
        self,
        url: str,
        *,
        user: str | None = None,
        api_key: str | None = None,
        labels: dict[str, str] | None = None,
        batch_size: int = 50,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__()
        self._push_url = url.rstrip("/") + "/loki/api/v1/push"
        self._labels = labels or {"service": "deployguard"}
        self._batch_size = batch_size
        self._buffer: list[tuple[str, str]] = []
        self._buffer_lock = Lock()
        auth = (user, api_key) if user and api_key else None
        self._client = client or httpx.Client(timeout=timeout, auth=auth)
        self.setFormatter(JsonFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        line = self.format(record)
        with self._buffer_lock:
            self._buffer.append((str(time.time_ns()), line))
            full = len(self._buffer) >= self._batch_size
        if full:
            self.flush()

    def flush(self) -> None:
        with self._buffer_lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return
        body = {"streams": [{"stream": self._labels, "values": [list(v) for v in batch]}]}
        try:
            response = self._client.post(self._push_url, json=body)
            response.raise_for_status()
        except httpx.HTTPError:
            self.handleError(logging.makeLogRecord({"msg": "loki.push.failed"}))

    def close(self) -> None:
        try:
            self.flush()
        finally:
            super().close()


def configure_logging(level: int = logging.INFO, *, extra_handlers: list[logging.Handler] | None = None) -> None:
    """Configure JSON logging for the service."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler, *(extra_handlers or [])], force=True)
