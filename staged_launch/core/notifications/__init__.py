"""Launch alert delivery.

Provides alert channels for stage transitions:
- Generic webhooks (configured alert endpoints)
- Slack
- Log-only fallback
"""

from staged_launch.core.notifications.channels import (
    LogChannel,
    SlackChannel,
    WebhookChannel,
)
from staged_launch.core.notifications.client import (
    AlertChannel,
    AlertEmitter,
    AlertSeverity,
    LaunchAlert,
)

__all__ = [
    "AlertChannel",
    "AlertEmitter",
    "AlertSeverity",
    "LaunchAlert",
    "LogChannel",
    "SlackChannel",
    "WebhookChannel",
]
