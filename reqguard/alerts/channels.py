"""
Alert Channels
==============
Outbound alert delivery: chat webhook and email, plus a fire-and-forget
dispatcher.

Delivery never blocks or fails the caller. The dispatcher schedules one
task per channel; each task logs and swallows its own failure.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Dict, Iterable, List, Optional, Set

import httpx
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .digest import MonitoringSnapshot, format_alert_digest, should_alert

logger = structlog.get_logger(__name__)

# tenacity's before_sleep_log wants a stdlib logger
_retry_logger = logging.getLogger(__name__)


class AlertDeliveryError(Exception):
    """Raised by a channel when delivery fails."""
    def __init__(self, message: str, channel: str = "unknown", status_code: Optional[int] = None):
        self.message = message
        self.channel = channel
        self.status_code = status_code
        super().__init__(f"[{channel}] {message} (Status: {status_code})")


class AlertTransientError(AlertDeliveryError):
    """Delivery failure worth retrying (network error or 5xx)."""
    pass


class AlertChannel:
    """
    Base class for alert channels.

    Args:
        categories: Error categories this channel receives; None means all
    """
    name = "channel"

    def __init__(self, categories: Optional[Iterable[str]] = None):
        self.categories: Optional[Set[str]] = set(categories) if categories else None

    def accepts(self, category: Optional[str]) -> bool:
        return self.categories is None or category is None or category in self.categories

    async def send(self, message: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class SlackWebhookChannel(AlertChannel):
    """Posts digests to a Slack-compatible incoming webhook."""
    name = "slack"

    def __init__(
        self,
        webhook_url: str,
        username: str = "Security Monitor",
        icon_emoji: str = ":rotating_light:",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        categories: Optional[Iterable[str]] = None,
    ):
        super().__init__(categories)
        self.webhook_url = webhook_url
        self.username = username
        self.icon_emoji = icon_emoji
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(AlertTransientError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
        reraise=True,
    )
    async def send(self, message: str) -> None:
        """Post the message; 5xx and network errors are retried."""
        payload = {
            "text": message,
            "username": self.username,
            "icon_emoji": self.icon_emoji,
        }
        try:
            response = await self.client.post(self.webhook_url, json=payload)
        except httpx.TransportError as e:
            raise AlertTransientError(f"Failed to connect: {e}", channel=self.name)

        if response.status_code >= 500:
            raise AlertTransientError("Webhook server error", channel=self.name, status_code=response.status_code)
        if response.status_code >= 400:
            raise AlertDeliveryError("Webhook rejected alert", channel=self.name, status_code=response.status_code)


class EmailAlertChannel(AlertChannel):
    """Sends digests over SMTP; the blocking client runs in an executor."""
    name = "email"

    def __init__(
        self,
        smtp_host: str,
        recipients: List[str],
        sender: str = "alerts@localhost",
        smtp_port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        subject: str = "Security monitoring alert",
        timeout: float = 10.0,
        categories: Optional[Iterable[str]] = None,
    ):
        super().__init__(categories)
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.recipients = recipients
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.subject = subject
        self.timeout = timeout

    def _build_message(self, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(body)
        return msg

    def _send_sync(self, body: str) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(self._build_message(body))

    async def send(self, message: str) -> None:
        if not self.recipients:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise AlertDeliveryError(str(e), channel=self.name)


class AlertDispatcher:
    """
    Fans alerts out to channels without blocking the caller.

    ``notify`` schedules delivery and returns immediately; ``send`` awaits
    delivery and reports per-channel success. Neither raises for channel
    failures.
    """

    def __init__(self, channels: Optional[List[AlertChannel]] = None):
        self.channels: List[AlertChannel] = list(channels or [])
        self._tasks: Set[asyncio.Task] = set()

    def add_channel(self, channel: AlertChannel) -> None:
        self.channels.append(channel)

    async def _deliver(self, channel: AlertChannel, message: str) -> bool:
        try:
            await channel.send(message)
            return True
        except Exception as e:
            logger.error(
                "Failed to send alert",
                channel=channel.name,
                error=str(e),
            )
            return False

    async def send(self, message: str, category: Optional[str] = None) -> Dict[str, bool]:
        """
        Deliver to every channel accepting the category.

        Returns:
            Channel name -> delivered
        """
        targets = [c for c in self.channels if c.accepts(category)]
        results = await asyncio.gather(*(self._deliver(c, message) for c in targets))
        return {c.name: ok for c, ok in zip(targets, results)}

    def notify(self, message: str, category: Optional[str] = None) -> None:
        """Schedule delivery in the background (requires a running loop)."""
        for channel in self.channels:
            if not channel.accepts(category):
                continue
            task = asyncio.get_running_loop().create_task(self._deliver(channel, message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def send_digest(self, snapshot: MonitoringSnapshot) -> bool:
        """Format and deliver a digest if the snapshot warrants an alert."""
        if not should_alert(snapshot):
            return False
        logger.error(
            "Monitoring alert",
            environment=snapshot.environment,
            error_count=len(snapshot.errors),
            warning_count=len(snapshot.warnings),
            empty_state_count=len(snapshot.empty_states),
            missing_data_count=len(snapshot.missing_data),
        )
        await self.send(format_alert_digest(snapshot))
        return True

    async def drain(self) -> None:
        """Wait for scheduled deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        for channel in self.channels:
            await channel.aclose()
