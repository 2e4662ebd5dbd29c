"""
Alerts Module
=============
Monitoring digests and fire-and-forget delivery to chat and email.
"""

from .digest import MonitoringSnapshot, format_alert_digest, should_alert
from .channels import (
    AlertChannel,
    AlertDeliveryError,
    AlertTransientError,
    AlertDispatcher,
    EmailAlertChannel,
    SlackWebhookChannel,
)

__all__ = [
    # Digest
    "MonitoringSnapshot",
    "format_alert_digest",
    "should_alert",
    # Channels
    "AlertChannel",
    "AlertDeliveryError",
    "AlertTransientError",
    "AlertDispatcher",
    "EmailAlertChannel",
    "SlackWebhookChannel",
]
