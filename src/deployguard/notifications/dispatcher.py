"""Fan-out of deployment lifecycle events to notification channels."""

from __future__ import annotations

from collections.abc import Sequence
import logging

from deployguard.contracts.events import NotificationEvent
from deployguard.contracts.types import Severity
from deployguard.notifications.channels import NotificationChannel

logger = logging.getLogger(__name__)

_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


class NotificationDispatcher:
    """Delivers each event once to every channel, isolating channel failures."""

    def __init__(self, channels: Sequence[NotificationChannel] = ()) -> None:
        self._channels = list(channels)

    @property
    def channel_names(self) -> list[str]:
        return [channel.name for channel in self._channels]

    def dispatch(self, event: NotificationEvent) -> list[str]:
        """Send `event` everywhere; return the channels that accepted it. Never raises."""
        delivered: list[str] = []
        for channel in self._channels:
            try:
                channel.send(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "notification.channel.failed",
                    extra={
                        "extra": {
                            "channel": channel.name,
                            "event_type": event.type.value,
                            "environment": event.environment,
                        }
                    },
                )
                continue
            delivered.append(channel.name)
        logger.log(
            _LEVELS[event.severity],
            "notification.dispatched",
            extra={
                "extra": {
                    "event_type": event.type.value,
                    "environment": event.environment,
                    "deployment_id": event.deployment_id,
                    "delivered": delivered,
                }
            },
        )
        return delivered
