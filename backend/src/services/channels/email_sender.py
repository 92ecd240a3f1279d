"""
Email channel sender.

Sends notifications through the SMTP transport configured in AppSettings:
- Subject: notification title
- Plain text part: notification body
- Optional HTML alternative: payload["html"]
- Destination: payload["email"], falling back to payload["to"]
"""

import re
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from backend.src.config.settings import AppSettings
from backend.src.models.notification import Notification, NotificationChannel
from backend.src.services.channels.base import ChannelSender, SendResult
from backend.src.utils.logging_config import get_logger


logger = get_logger("channels")

# Newlines and control characters would allow header injection
_HEADER_INJECTION_PATTERN = re.compile(r"[\r\n\x00\x0b\x0c]")

ERROR_NOT_CONFIGURED = "SMTP transport not configured"
ERROR_NO_DESTINATION = "No destination email"


def sanitize_header(value: Optional[str], max_length: int = 998) -> str:
    """
    Make a string safe for use as an email header value.

    Args:
        value: Raw header value
        max_length: Maximum header length (RFC 5322 line limit)

    Returns:
        Value without newlines or control characters, truncated and stripped
    """
    if not value:
        return ""
    return _HEADER_INJECTION_PATTERN.sub("", str(value))[:max_length].strip()


def resolve_destination(notification: Notification) -> Optional[str]:
    """Get the destination address from the notification payload, if any."""
    payload = notification.payload or {}
    destination = payload.get("email") or payload.get("to")
    if not isinstance(destination, str):
        return None
    destination = sanitize_header(destination, max_length=254)
    return destination or None


class EmailChannelSender(ChannelSender):
    """Sender for the email channel."""

    channel = NotificationChannel.EMAIL

    def __init__(self, settings: AppSettings):
        """
        Initialize the email sender.

        Args:
            settings: Application settings holding the SMTP configuration
        """
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._settings.smtp_configured

    def build_message(self, notification: Notification, destination: str) -> MIMEMultipart:
        """Build the MIME message for a notification."""
        message = MIMEMultipart("alternative")
        message["Subject"] = Header(sanitize_header(notification.title, max_length=200), "utf-8")
        message["From"] = sanitize_header(self._settings.smtp_from)
        message["To"] = destination

        message.attach(MIMEText(notification.body or "", "plain", "utf-8"))

        html_body = (notification.payload or {}).get("html")
        if html_body:
            message.attach(MIMEText(str(html_body), "html", "utf-8"))

        return message

    async def send(self, notification: Notification) -> SendResult:
        if not self.is_configured:
            return SendResult.failed(ERROR_NOT_CONFIGURED)

        destination = resolve_destination(notification)
        if not destination:
            return SendResult.failed(ERROR_NO_DESTINATION)

        message = self.build_message(notification, destination)
        settings = self._settings

        try:
            async with aiosmtplib.SMTP(
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                use_tls=settings.smtp_secure,
                timeout=settings.smtp_timeout_sec,
            ) as smtp:
                if settings.smtp_user:
                    await smtp.login(settings.smtp_user, settings.smtp_pass)
                await smtp.send_message(message)
        except aiosmtplib.SMTPException as e:
            logger.warning(
                "SMTP send failed",
                extra={
                    "notification_guid": notification.guid,
                    "smtp_host": settings.smtp_host,
                    "error": str(e),
                },
            )
            return SendResult.failed(str(e) or e.__class__.__name__)

        logger.info(
            "Email notification sent",
            extra={"notification_guid": notification.guid, "user_id": notification.user_id},
        )
        return SendResult.ok()
