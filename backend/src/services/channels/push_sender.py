"""
Push channel sender.

Mobile/browser push is not wired to a provider yet. The sender logs the
notification and reports success through the regular contract so push
entries flow through the queue like any other channel.
"""

from backend.src.models.notification import Notification, NotificationChannel
from backend.src.services.channels.base import ChannelSender, SendResult
from backend.src.utils.logging_config import get_logger


logger = get_logger("channels")


class PushChannelSender(ChannelSender):
    """Placeholder sender for the push channel."""

    channel = NotificationChannel.PUSH

    async def send(self, notification: Notification) -> SendResult:
        logger.info(
            "Push notification (no provider configured)",
            extra={
                "notification_guid": notification.guid,
                "user_id": notification.user_id,
                "title": notification.title,
            },
        )
        return SendResult.ok()
