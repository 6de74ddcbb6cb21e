"""
Notification Senders

Delivery backends used by the notification drain. A sender never raises
for an ordinary delivery failure; it returns DeliveryResult(accepted=False)
with the error text so the queue can decide between retry and terminal
failure.

- SmtpNotificationSender: plain SMTP (smtplib) run in a worker thread
- LoggingNotificationSender: development fallback that only logs

Usage:
    from tubelearn.services.notifications.sender import build_sender

    sender = build_sender(settings)
    result = await sender.send("user@example.com", "Subject", "Body")
"""

import asyncio
import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

from tubelearn.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one send() call."""

    accepted: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationSender:
    """Interface for delivery backends."""

    async def send(self, recipient: str, subject: str, body: str) -> DeliveryResult:
        raise NotImplementedError


class SmtpNotificationSender(NotificationSender):
    """
    Sends plain-text email over SMTP.

    smtplib is blocking, so each message is sent via asyncio.to_thread to
    keep the drain loop's event loop responsive.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "noreply@localhost",
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def _build_message(self, recipient: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=self.host or None)
        message.set_content(body)
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, recipient: str, subject: str, body: str) -> DeliveryResult:
        message = self._build_message(recipient, subject, body)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"SMTP delivery to {recipient} failed: {e}")
            return DeliveryResult(accepted=False, error=str(e))

        return DeliveryResult(accepted=True, provider_message_id=message["Message-ID"])


class LoggingNotificationSender(NotificationSender):
    """Logs messages instead of sending them (no SMTP configured)."""

    async def send(self, recipient: str, subject: str, body: str) -> DeliveryResult:
        message_id = f"log-{uuid.uuid4()}"
        logger.info(f"[notification] to={recipient} subject={subject!r} id={message_id}")
        logger.debug(body)
        return DeliveryResult(accepted=True, provider_message_id=message_id)


def build_sender(config: Settings) -> NotificationSender:
    """Pick a sender from settings: SMTP when SMTP_HOST is set, logging otherwise."""
    if config.SMTP_HOST:
        return SmtpNotificationSender(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            use_tls=config.SMTP_USE_TLS,
            sender=config.SMTP_FROM,
        )

    logger.warning("SMTP_HOST not configured, notifications will only be logged")
    return LoggingNotificationSender()
