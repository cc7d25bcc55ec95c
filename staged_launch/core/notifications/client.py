"""Alert emitter for launch transitions."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Set

from staged_launch.core.launch.models import LaunchMetrics, LaunchStage, utcnow
from staged_launch.core.observability.metrics import launch_alerts_total

logger = logging.getLogger(__name__)


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def log_level(self) -> int:
        return {
            AlertSeverity.INFO: logging.INFO,
            AlertSeverity.WARNING: logging.WARNING,
            AlertSeverity.CRITICAL: logging.ERROR,
        }[self]


@dataclass
class LaunchAlert:
    """An alert about a feature launch."""

    feature: str
    message: str
    severity: AlertSeverity = AlertSeverity.INFO
    timestamp: datetime = field(default_factory=utcnow)
    current_stage: Optional[LaunchStage] = None
    recent_metrics: Sequence[LaunchMetrics] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Wire payload posted to alert endpoints."""
        return {
            "feature": self.feature,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "currentStage": self.current_stage.value if self.current_stage else None,
            "recentMetrics": [m.to_dict() for m in self.recent_metrics],
        }


class AlertChannel(ABC):
    """Abstract base class for alert channels."""

    name: str = "base"

    @abstractmethod
    async def send(self, alert: LaunchAlert) -> bool:
        """Deliver an alert. Returns False on failure."""

    def is_configured(self) -> bool:
        return True


class AlertEmitter:
    """Fire-and-forget alert dispatch.

    `send` returns immediately; deliveries run as background tasks and their
    failures are logged and counted, never raised to the caller.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 10.0,
        channels: Optional[Iterable[AlertChannel]] = None,
        history_size: int = 100,
        transport: Optional[Any] = None,
    ):
        """Initialize alert emitter.

        Args:
            base_url: Base URL used to resolve relative alert endpoints
            timeout: Per-delivery HTTP timeout in seconds
            channels: Channels that receive every alert (e.g. Slack)
            history_size: Number of recent alerts kept for inspection
            transport: Optional httpx transport for webhook channels
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._global_channels: List[AlertChannel] = [
            c for c in (channels or []) if c.is_configured()
        ]
        self._endpoint_channels: Dict[str, AlertChannel] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._history: Deque[LaunchAlert] = deque(maxlen=history_size)

    def add_channel(self, channel: AlertChannel) -> None:
        if channel.is_configured():
            self._global_channels.append(channel)
            logger.info(f"Registered alert channel: {channel.name}")
        else:
            logger.warning(f"Channel {channel.name} is not configured, skipping")

    def channel_for_endpoint(self, endpoint: str) -> AlertChannel:
        """Resolve an alert endpoint to a channel, caching per endpoint."""
        from staged_launch.core.notifications.channels import LogChannel, WebhookChannel

        channel = self._endpoint_channels.get(endpoint)
        if channel is not None:
            return channel

        if endpoint.startswith(("http://", "https://")):
            channel = WebhookChannel(endpoint, timeout=self.timeout, transport=self._transport)
        elif self.base_url:
            channel = WebhookChannel(
                f"{self.base_url}/{endpoint.lstrip('/')}",
                timeout=self.timeout,
                transport=self._transport,
            )
        else:
            channel = LogChannel(endpoint)
        self._endpoint_channels[endpoint] = channel
        return channel

    def send(
        self,
        feature_key: str,
        message: str,
        severity: AlertSeverity = AlertSeverity.INFO,
        *,
        current_stage: Optional[LaunchStage] = None,
        recent_metrics: Sequence[LaunchMetrics] = (),
        endpoints: Iterable[str] = (),
    ) -> LaunchAlert:
        """Emit an alert to the configured endpoints and global channels."""
        alert = LaunchAlert(
            feature=feature_key,
            message=message,
            severity=severity,
            current_stage=current_stage,
            recent_metrics=list(recent_metrics)[-5:],
        )
        self._history.append(alert)
        logger.log(severity.log_level, f"[{severity.value}] {feature_key}: {message}")

        channels = [self.channel_for_endpoint(e) for e in endpoints] + self._global_channels
        if not channels:
            return alert

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, alert for {feature_key} not delivered")
            launch_alerts_total.labels(severity=severity.value, status="dropped").inc()
            return alert

        task = loop.create_task(self._deliver(alert, channels))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return alert

    async def _deliver(self, alert: LaunchAlert, channels: List[AlertChannel]) -> Dict[str, bool]:
        results: Dict[str, bool] = {}
        send_results = await asyncio.gather(
            *(channel.send(alert) for channel in channels), return_exceptions=True
        )
        for channel, result in zip(channels, send_results):
            if isinstance(result, Exception):
                logger.error(f"Failed to send alert to {channel.name}: {result}")
                results[channel.name] = False
            else:
                results[channel.name] = bool(result)
            status = "sent" if results[channel.name] else "failed"
            launch_alerts_total.labels(severity=alert.severity.value, status=status).inc()
        return results

    async def flush(self) -> None:
        """Wait for in-flight deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def recent_alerts(self, feature_key: Optional[str] = None) -> List[LaunchAlert]:
        return [a for a in self._history if feature_key is None or a.feature == feature_key]
