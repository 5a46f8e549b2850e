"""
Notification dispatch -- the boundary between deciding and delivering.

Responsibility:
    The core decides WHAT to send and WHEN; a NotificationDispatcher decides
    HOW.  ChannelDispatcher is the in-process implementation: it renders the
    subject and body, then routes by channel type to a registered
    ChannelSender.  LoggingSender is the default for every channel type;
    WebhookSender posts JSON through httpx.

Architecture position:
    Alerts > Services.  Called by ActionExecutor.  Delivery outcome is only
    logged; a sender's exception is logged here and re-raised so the
    executor can record the failed channel.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from inventory_kernel.logging_config import get_logger

from inventory_alerts.domain.templates import render_template
from inventory_alerts.domain.types import (
    Alert,
    AlertTemplate,
    ChannelType,
    NotificationChannel,
)

logger = get_logger("alerts.dispatch")


@dataclass(frozen=True)
class Notification:
    """A rendered message ready for one channel."""

    alert_id: str
    channel_type: ChannelType
    recipients: tuple[str, ...]
    subject: str
    body: str
    severity: str
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def dispatch(
        self,
        alert: Alert,
        channel: NotificationChannel,
        template: AlertTemplate | None = None,
    ) -> None:
        ...


class ChannelSender(Protocol):
    def send(self, notification: Notification, channel: NotificationChannel) -> None:
        ...


class LoggingSender:
    """Records the delivery in the structured log.  Default for every channel."""

    def send(self, notification: Notification, channel: NotificationChannel) -> None:
        logger.info(
            "notification_sent",
            extra={
                "alert_id": notification.alert_id,
                "channel": notification.channel_type.value,
                "recipient_count": len(notification.recipients),
                "subject": notification.subject,
                "severity": notification.severity,
            },
        )


class WebhookSender:
    """POSTs the alert payload as JSON."""

    def __init__(self, client: httpx.Client | None = None, timeout_seconds: float = 10.0):
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def post(self, url: str, payload: Mapping[str, Any]) -> int:
        response = self._client.post(url, json=dict(payload))
        response.raise_for_status()
        logger.info(
            "webhook_delivered",
            extra={"url": url, "status_code": response.status_code},
        )
        return response.status_code

    def send(self, notification: Notification, channel: NotificationChannel) -> None:
        if not channel.webhook_url:
            raise ValueError("webhook channel has no webhook_url")
        body = dict(notification.payload)
        body.setdefault("subject", notification.subject)
        body.setdefault("body", notification.body)
        self.post(channel.webhook_url, body)

    def close(self) -> None:
        self._client.close()


class ChannelDispatcher:
    """Routes each channel to its sender; LoggingSender covers unregistered types."""

    def __init__(
        self,
        senders: Mapping[ChannelType, ChannelSender] | None = None,
        default_sender: ChannelSender | None = None,
    ):
        self._senders: dict[ChannelType, ChannelSender] = dict(senders or {})
        self._default = default_sender or LoggingSender()

    def register(self, channel_type: ChannelType, sender: ChannelSender) -> None:
        self._senders[channel_type] = sender

    def sender_for(self, channel_type: ChannelType) -> ChannelSender:
        return self._senders.get(channel_type, self._default)

    def dispatch(
        self,
        alert: Alert,
        channel: NotificationChannel,
        template: AlertTemplate | None = None,
    ) -> None:
        if template is not None:
            subject, body = render_template(template, alert)
        else:
            subject, body = f"Inventory alert: {alert.title}", alert.message

        notification = Notification(
            alert_id=str(alert.alert_id),
            channel_type=channel.type,
            recipients=channel.recipients,
            subject=subject,
            body=body,
            severity=alert.severity,
            payload=alert.payload(),
        )
        try:
            self.sender_for(channel.type).send(notification, channel)
        except Exception:
            logger.warning(
                "notification_delivery_failed",
                extra={"alert_id": str(alert.alert_id), "channel": channel.type.value},
                exc_info=True,
            )
            raise
