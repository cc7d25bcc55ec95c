"""Alert channels: JSON webhooks, Slack incoming webhooks and a log sink."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Tuple

import httpx

from .client import AlertChannel, AlertSeverity, LaunchAlert

logger = logging.getLogger(__name__)


class _HttpChannel(AlertChannel):
    """Posts one JSON document per alert; subclasses shape the document."""

    accepted_statuses: Tuple[int, ...] = (200, 201, 202, 204)

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.url)

    def render(self, alert: LaunchAlert) -> Dict[str, Any]:
        return alert.to_dict()

    async def send(self, alert: LaunchAlert) -> bool:
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout
            ) as client:
                response = await client.post(
                    self.url, json=self.render(alert), headers=self.headers
                )
        except httpx.HTTPError as e:
            logger.error(f"Alert delivery via {self.name} failed: {e}")
            return False

        if response.status_code not in self.accepted_statuses:
            logger.error(
                f"Alert delivery via {self.name} rejected: "
                f"{response.status_code} {response.text[:200]}"
            )
            return False
        logger.debug(f"Alert for {alert.feature} delivered via {self.name}")
        return True


class WebhookChannel(_HttpChannel):
    """Sends the raw alert document to an arbitrary URL."""

    def __init__(
        self,
        webhook_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(webhook_url, timeout=timeout, transport=transport, headers=headers)
        self.name = webhook_url


class SlackChannel(_HttpChannel):
    """Slack incoming webhook, configured from SLACK_WEBHOOK_URL / SLACK_CHANNEL by default."""

    name = "slack"
    accepted_statuses = (200,)

    _COLORS = {
        AlertSeverity.INFO: "#36a64f",
        AlertSeverity.WARNING: "#f4c030",
        AlertSeverity.CRITICAL: "#E96D76",
    }

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        username: str = "Staged Launch",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            webhook_url or os.getenv("SLACK_WEBHOOK_URL", ""),
            timeout=timeout,
            transport=transport,
        )
        self.channel = channel or os.getenv("SLACK_CHANNEL", "")
        self.username = username

    def render(self, alert: LaunchAlert) -> Dict[str, Any]:
        fields = [{"title": "Feature", "value": alert.feature, "short": True}]
        if alert.current_stage is not None:
            fields.append(
                {"title": "Stage", "value": alert.current_stage.value, "short": True}
            )

        attachment = {
            "color": self._COLORS[alert.severity],
            "title": f"[{alert.severity.value.upper()}] {alert.feature}",
            "text": alert.message,
            "fields": fields,
            "ts": int(alert.timestamp.timestamp()),
        }
        payload: Dict[str, Any] = {"username": self.username, "attachments": [attachment]}
        if self.channel:
            payload["channel"] = self.channel
        return payload


class LogChannel(AlertChannel):
    """Fallback for relative endpoints when no alert base URL is configured."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.name = f"log:{endpoint}"

    async def send(self, alert: LaunchAlert) -> bool:
        logger.log(
            alert.severity.log_level,
            f"Alert for {self.endpoint}: {alert.feature} [{alert.severity.value}] {alert.message}",
        )
        return True
