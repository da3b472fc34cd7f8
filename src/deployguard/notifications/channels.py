"""Notification channel senders.

Each channel renders its own payload from a `NotificationEvent` and raises
`NotificationError` (or lets the transport error through) on failure; the
dispatcher owns isolation.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from email.message import EmailMessage
from pathlib import Path
import smtplib
from typing import Any, Protocol

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from deployguard.contracts.events import NotificationEvent
from deployguard.contracts.types import NotificationType
from deployguard.errors import NotificationError

TEMPLATE_DIR = Path(__file__).with_name("templates")

COLORS: dict[NotificationType, str] = {
    NotificationType.STARTED: "#36a64f",
    NotificationType.SUCCESS: "#36a64f",
    NotificationType.FAILURE: "#ff0000",
    NotificationType.ROLLBACK: "#ff9900",
    NotificationType.ROLLBACK_FAILED: "#8b0000",
}

SUBJECTS: dict[NotificationType, str] = {
    NotificationType.STARTED: "Started",
    NotificationType.SUCCESS: "Success",
    NotificationType.FAILURE: "Failed",
    NotificationType.ROLLBACK: "Rollback",
    NotificationType.ROLLBACK_FAILED: "Rollback FAILED",
}


class NotificationChannel(Protocol):
    name: str

    def send(self, event: NotificationEvent) -> None:
        """Deliver one event or raise."""


def email_subject(event: NotificationEvent) -> str:
    return f"[Deployment] {SUBJECTS[event.type]} - {event.environment}"


def _chat_fields(event: NotificationEvent) -> list[dict[str, Any]]:
    fields: list[dict[str, Any]] = [
        {"title": "Environment", "value": event.environment, "short": True}
    ]
    if event.branch:
        fields.append({"title": "Branch", "value": event.branch, "short": True})
    if event.commit:
        fields.append({"title": "Commit", "value": event.commit[:8], "short": True})
    if event.url:
        fields.append({"title": "URL", "value": event.url, "short": False})
    for key in ("error", "reason"):
        if key in event.details:
            fields.append({"title": key.title(), "value": str(event.details[key]), "short": False})
    return fields


def chat_payload(event: NotificationEvent) -> dict[str, Any]:
    return {
        "attachments": [
            {
                "color": COLORS[event.type],
                "title": event.message,
                "fields": _chat_fields(event),
                "footer": "Deployment System",
                "ts": int(event.created_at.timestamp()),
            }
        ]
    }


@dataclass(slots=True)
class ChatWebhookChannel:
    """Incoming-webhook style chat message with a coloured attachment."""

    url: str | None
    client: httpx.Client
    timeout: float = 10.0
    name: str = "chat"

    def send(self, event: NotificationEvent) -> None:
        if not self.url:
            raise NotificationError("Chat webhook URL not configured")
        response = self.client.post(self.url, json=chat_payload(event), timeout=self.timeout)
        response.raise_for_status()


@dataclass(slots=True)
class WebhookChannel:
    """POSTs the event as JSON, optionally with an Authorization header."""

    url: str | None
    client: httpx.Client
    auth_header: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 10.0
    name: str = "webhook"

    def send(self, event: NotificationEvent) -> None:
        if not self.url:
            raise NotificationError("Webhook URL not configured")
        headers = dict(self.headers)
        if self.auth_header:
            headers["Authorization"] = self.auth_header
        payload = event.model_dump(mode="json")
        payload["message"] = event.message
        response = self.client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()


def _default_jinja_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
        keep_trailing_newline=True,
    )


@dataclass(slots=True)
class EmailChannel:
    """Multipart text/HTML email rendered from Jinja2 templates."""

    recipients: list[str]
    sender: str = "deployments@localhost"
    host: str = "localhost"
    port: int = 25
    timeout: float = 10.0
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP
    jinja_env: Environment = field(default_factory=_default_jinja_env)
    name: str = "email"

    def render(self, event: NotificationEvent) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = email_subject(event)
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        context = {"event": event, "color": COLORS[event.type]}
        message.set_content(self.jinja_env.get_template("deployment_email.txt.j2").render(context))
        message.add_alternative(
            self.jinja_env.get_template("deployment_email.html.j2").render(context),
            subtype="html",
        )
        return message

    def send(self, event: NotificationEvent) -> None:
        if not self.recipients:
            raise NotificationError("Email recipients not configured")
        message = self.render(event)
        with self.smtp_factory(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.send_message(message)
